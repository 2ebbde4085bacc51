"""Domain enums."""

from mediagen.core.domain.generation import (
    ACTIVE_STATUSES,
    TERMINAL_STATUSES,
    Action,
    GenerationStatus,
    ProviderName,
    UserRole,
)

__all__ = [
    "Action",
    "GenerationStatus",
    "ProviderName",
    "UserRole",
    "ACTIVE_STATUSES",
    "TERMINAL_STATUSES",
]
