"""Logging field schema - v1.0

Standard fields (added to all logs):
- schema_version: Log schema version
- service: Service name (mediagen-api)
- event: Event type (generation_created, provider_fallback, etc.)
- trace_id: Request trace ID
- duration_ms: Duration in milliseconds

High cardinality fields (OK in logs, NOT in metric labels):
- generation_id: Generation ID
- prediction_id: Provider-side job ID
- user_id: User ID
"""

from enum import StrEnum


class LogEvent(StrEnum):
    """Standard log event types.

    Use these event types in the 'event' extra field for consistent
    log filtering and analysis.
    """

    # Generation lifecycle
    GENERATION_CREATED = "generation_created"
    GENERATION_DISPATCHED = "generation_dispatched"
    GENERATION_COMPLETED = "generation_completed"
    GENERATION_FAILED = "generation_failed"
    GENERATION_CANCELLED = "generation_cancelled"
    GENERATION_RETRIED = "generation_retried"
    GENERATION_AUTO_RETRY = "generation_auto_retry"
    GENERATION_SYNCED = "generation_synced"
    STALE_CLEANUP = "stale_cleanup"

    # Providers
    PROVIDER_SUBMITTED = "provider_submitted"
    PROVIDER_FALLBACK = "provider_fallback"
    PROVIDER_ERROR = "provider_error"
    PROVIDER_COOLDOWN = "provider_cooldown"
    WEBHOOK_RECEIVED = "webhook_received"
    WEBHOOK_SKIPPED = "webhook_skipped"

    # Queue worker
    JOB_ENQUEUED = "job_enqueued"
    JOB_REQUEUED = "job_requeued"
    JOB_INVALID = "job_invalid"

    # Media storage
    MEDIA_SAVED = "media_saved"
    MEDIA_SAVE_FAILED = "media_save_failed"

    # Coordinator / leadership
    STATE_CHANGED = "state_changed"
    OPERATION_FAILED = "operation_failed"
    LEADERSHIP_ACQUIRED = "leadership_acquired"
    LEADERSHIP_LOST = "leadership_lost"

    # Lifecycle events
    APP_STARTED = "app_started"
    APP_STOPPED = "app_stopped"

    # API events
    REQUEST_COMPLETE = "request_complete"
    REQUEST_FAILED = "request_failed"
    REQUEST_SLOW = "request_slow"

    # Infrastructure
    DB_CONNECTED = "db_connected"
    DB_ERROR = "db_error"
    REDIS_CONNECTION_ERROR = "redis_connection_error"
    S3_CONNECTED = "s3_connected"
    S3_BUCKET_CREATED = "s3_bucket_created"
    S3_ERROR = "s3_error"
    API_LOG_WRITE_FAILED = "api_log_write_failed"

