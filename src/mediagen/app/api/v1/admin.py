"""Admin API endpoints."""

from typing import Any

from fastapi import APIRouter

from mediagen.app.api.dependencies import AdminUser
from mediagen.core.circuit_breaker import circuit_breaker_states
from mediagen.providers.registry import get_registry

router = APIRouter(prefix="/admin", tags=["admin"])


@router.get("/providers")
async def provider_states(_admin: AdminUser) -> dict[str, Any]:
    """Dispatcher counters per provider plus circuit breaker states."""
    return {
        "providers": await get_registry().dispatcher.states(),
        "circuit_breakers": circuit_breaker_states(),
    }
