"""Generation and API log models.

Enum-valued columns are stored as plain strings; convert to
mediagen.core.domain enums in the service layer.
"""

from datetime import datetime
from typing import Any

from sqlalchemy import Column, DateTime, Index, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlmodel import Field, SQLModel

from mediagen.core.models.auth import generate_ulid, utc_now


class Generation(SQLModel, table=True):
    """One request to an external model.

    settings holds the user-supplied parameters plus bookkeeping keys
    (auto_retry_count). provider/provider_model/prediction_id describe the
    chain entry currently serving the generation; chain_position is its index
    in the resolved chain and drives auto-retry.
    """

    __tablename__ = "generations"

    id: str = Field(default_factory=generate_ulid, primary_key=True)
    user_id: str = Field(foreign_key="users.id", index=True)
    workspace_id: str | None = Field(default=None, index=True)

    action: str  # Action value
    model_id: str
    model_name: str | None = None

    provider: str | None = None  # ProviderName value
    provider_model: str | None = None
    prediction_id: str | None = Field(default=None, index=True)
    provider_token_index: int | None = None
    chain_position: int = Field(default=0)

    status: str = Field(default="pending")  # GenerationStatus value
    prompt: str | None = Field(default=None, sa_column=Column(Text))
    settings: dict[str, Any] = Field(
        default_factory=dict,
        sa_column=Column(JSONB, nullable=False, server_default="{}"),
    )
    input_data: dict[str, Any] = Field(
        default_factory=dict,
        sa_column=Column(JSONB, nullable=False, server_default="{}"),
    )

    output_urls: list[str] | None = Field(default=None, sa_column=Column(JSONB))
    output_text: str | None = Field(default=None, sa_column=Column(Text))
    provider_output: Any | None = Field(default=None, sa_column=Column(JSONB))
    error_message: str | None = Field(default=None, sa_column=Column(Text))
    cost_credits: int = Field(default=0)

    created_at: datetime = Field(
        default_factory=utc_now, sa_column=Column(DateTime(timezone=True), nullable=False)
    )
    updated_at: datetime = Field(
        default_factory=utc_now, sa_column=Column(DateTime(timezone=True), nullable=False)
    )
    started_at: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True))
    )
    completed_at: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True))
    )

    __table_args__ = (
        # Concurrent limit and sync-status
        Index(
            "idx_generations_user_active",
            "user_id",
            "created_at",
            postgresql_where="status IN ('pending', 'processing')",
        ),
        # Stale reaper
        Index(
            "idx_generations_active_created",
            "created_at",
            postgresql_where="status IN ('pending', 'processing')",
        ),
        # History listing
        Index("idx_generations_user_created", "user_id", "created_at"),
    )


class ApiLog(SQLModel, table=True):
    """Audit row for provider calls, webhooks and fallback notices.

    Fallback notices use method WARN, status 299 and error_category
    "warning" with is_fallback set.
    """

    __tablename__ = "api_logs"

    id: str = Field(default_factory=generate_ulid, primary_key=True)
    created_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False, index=True),
    )
    method: str
    path: str
    status_code: int
    duration_ms: int | None = None
    user_id: str | None = Field(default=None, index=True)
    provider: str | None = None
    external_status: str | None = None
    model_name: str | None = None
    generation_id: str | None = Field(default=None, index=True)

    request_body: Any | None = Field(default=None, sa_column=Column(JSONB))
    response_summary: Any | None = Field(default=None, sa_column=Column(JSONB))
    error_message: str | None = Field(default=None, sa_column=Column(Text))
    error_stack: str | None = Field(default=None, sa_column=Column(Text))
    error_category: str | None = Field(default=None, index=True)
    is_fallback: bool = Field(default=False)
    retry_count: int = Field(default=0)
