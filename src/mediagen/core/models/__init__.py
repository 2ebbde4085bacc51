"""Database models for mediagen.

Models are defined using SQLModel (SQLAlchemy + Pydantic).
"""

from mediagen.core.models.auth import Session, User, generate_ulid, utc_now
from mediagen.core.models.generation import ApiLog, Generation

__all__ = [
    "User",
    "Session",
    "Generation",
    "ApiLog",
    "generate_ulid",
    "utc_now",
]
