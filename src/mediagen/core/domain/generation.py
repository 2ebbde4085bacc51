"""Generation lifecycle enums.

Status flow:
    pending -> processing -> completed | failed | cancelled

pending:    row inserted, waiting in queue or about to be submitted
processing: submitted to a provider (prediction_id set for async providers)
"""

from enum import StrEnum


class GenerationStatus(StrEnum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_active(self) -> bool:
        return self in ACTIVE_STATUSES

    @property
    def is_terminal(self) -> bool:
        return self not in ACTIVE_STATUSES


ACTIVE_STATUSES = frozenset({GenerationStatus.PENDING, GenerationStatus.PROCESSING})
TERMINAL_STATUSES = frozenset(
    {GenerationStatus.COMPLETED, GenerationStatus.FAILED, GenerationStatus.CANCELLED}
)


class Action(StrEnum):
    """What a generation does. Each catalog model serves exactly one action."""

    # Image
    CREATE = "create"
    EDIT = "edit"
    UPSCALE = "upscale"
    REMOVE_BG = "remove_bg"
    INPAINT = "inpaint"
    EXPAND = "expand"
    # Video
    VIDEO_CREATE = "video_create"
    VIDEO_I2V = "video_i2v"
    VIDEO_EDIT = "video_edit"
    VIDEO_UPSCALE = "video_upscale"
    # Analyze (text output)
    ANALYZE_DESCRIBE = "analyze_describe"
    ANALYZE_OCR = "analyze_ocr"
    ANALYZE_PROMPT = "analyze_prompt"

    @property
    def is_video(self) -> bool:
        return self.value.startswith("video_")

    @property
    def is_analyze(self) -> bool:
        return self.value.startswith("analyze_")


class ProviderName(StrEnum):
    REPLICATE = "replicate"
    FAL = "fal"
    GOOGLE = "google"


class UserRole(StrEnum):
    USER = "user"
    ADMIN = "admin"
    SUPER_ADMIN = "super_admin"

    @property
    def is_admin(self) -> bool:
        return self in (UserRole.ADMIN, UserRole.SUPER_ADMIN)
