"""API v1 module."""

from mediagen.app.api.v1.admin import router as admin_router
from mediagen.app.api.v1.auth import router as auth_router
from mediagen.app.api.v1.cron import router as cron_router
from mediagen.app.api.v1.generations import router as generations_router
from mediagen.app.api.v1.models import router as models_router
from mediagen.app.api.v1.webhooks import router as webhooks_router

__all__ = [
    "admin_router",
    "auth_router",
    "cron_router",
    "generations_router",
    "models_router",
    "webhooks_router",
]
