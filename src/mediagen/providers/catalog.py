"""Built-in model catalog.

Each model serves one Action and lists its provider chain in fallback
order. Provider model ids are the provider's own names: Replicate
owner/name, Fal app path, Google model name.
"""

from dataclasses import dataclass, field

from mediagen.core.domain import Action, ProviderName


@dataclass(frozen=True)
class ChainEntry:
    provider: ProviderName
    model: str


@dataclass(frozen=True)
class ModelSpec:
    id: str
    display_name: str
    action: Action
    chain: tuple[ChainEntry, ...]
    # Pinned Replicate version (community models without an official endpoint)
    version: str | None = None
    cost_credits: int = 1
    # Fal needs Gemini-style input remapped when it serves a Google-first model
    google_primary: bool = field(default=False)


def _replicate(model: str) -> ChainEntry:
    return ChainEntry(ProviderName.REPLICATE, model)


def _fal(model: str) -> ChainEntry:
    return ChainEntry(ProviderName.FAL, model)


def _google(model: str) -> ChainEntry:
    return ChainEntry(ProviderName.GOOGLE, model)


_MODELS: tuple[ModelSpec, ...] = (
    # Image: create
    ModelSpec(
        "nano-banana-pro",
        "Nano Banana Pro",
        Action.CREATE,
        (
            _google("gemini-3-pro-image-preview"),
            _replicate("google/nano-banana-pro"),
            _fal("fal-ai/gemini-3-pro-image-preview"),
        ),
        cost_credits=4,
        google_primary=True,
    ),
    ModelSpec(
        "nano-banana",
        "Nano Banana",
        Action.CREATE,
        (
            _google("gemini-2.5-flash-image"),
            _replicate("google/nano-banana"),
            _fal("fal-ai/nano-banana"),
        ),
        cost_credits=2,
        google_primary=True,
    ),
    ModelSpec("flux-2-pro", "FLUX 2 Pro", Action.CREATE, (_replicate("black-forest-labs/flux-2-pro"),), cost_credits=3),
    ModelSpec("flux-1.1-pro", "FLUX 1.1 Pro", Action.CREATE, (_replicate("black-forest-labs/flux-1.1-pro"),), cost_credits=2),
    ModelSpec("seedream-4", "Seedream 4", Action.CREATE, (_replicate("bytedance/seedream-4"),), cost_credits=2),
    ModelSpec("ideogram-v3-turbo", "Ideogram v3 Turbo", Action.CREATE, (_replicate("ideogram-ai/ideogram-v3-turbo"),), cost_credits=2),
    ModelSpec("recraft-v3-svg", "Recraft v3 SVG", Action.CREATE, (_replicate("recraft-ai/recraft-v3-svg"),), cost_credits=3),
    ModelSpec(
        "z-image-turbo",
        "Z-Image Turbo",
        Action.CREATE,
        (_replicate("prunaai/z-image-turbo"),),
        version="7ea16386290ff5977c7812e66e462d7ec3954d8e007a8cd18ded3e7d41f5d7cf",
        cost_credits=1,
    ),
    # Image: edit
    ModelSpec(
        "nano-banana-pro-edit",
        "Nano Banana Pro Edit",
        Action.EDIT,
        (
            _google("gemini-3-pro-image-preview"),
            _replicate("google/nano-banana-pro"),
            _fal("fal-ai/gemini-3-pro-image-preview/edit"),
        ),
        cost_credits=4,
        google_primary=True,
    ),
    ModelSpec("flux-kontext-max-edit", "FLUX Kontext Max", Action.EDIT, (_replicate("black-forest-labs/flux-kontext-max"),), cost_credits=3),
    ModelSpec("seedream-4-edit", "Seedream 4 Edit", Action.EDIT, (_replicate("bytedance/seedream-4"),), cost_credits=2),
    # Image: tools
    ModelSpec("real-esrgan", "Real-ESRGAN", Action.UPSCALE, (_replicate("nightmareai/real-esrgan"),), cost_credits=1),
    ModelSpec("crystal-upscaler", "Crystal Upscaler", Action.UPSCALE, (_replicate("philz1337x/crystal-upscaler"),), cost_credits=2),
    ModelSpec("birefnet", "BiRefNet", Action.REMOVE_BG, (_replicate("men1scus/birefnet"), _fal("fal-ai/birefnet")), cost_credits=1),
    ModelSpec("bria-remove-background", "Bria Remove Background", Action.REMOVE_BG, (_replicate("bria/remove-background"),), cost_credits=1),
    ModelSpec("flux-fill-pro", "FLUX Fill Pro", Action.INPAINT, (_replicate("black-forest-labs/flux-fill-pro"),), cost_credits=3),
    ModelSpec("bria-genfill-inpaint", "Bria GenFill", Action.INPAINT, (_replicate("bria/genfill"),), cost_credits=2),
    ModelSpec("bria-expand", "Bria Expand", Action.EXPAND, (_replicate("bria/expand-image"),), cost_credits=2),
    # Video
    ModelSpec("veo-3.1-fast", "Veo 3.1 Fast", Action.VIDEO_CREATE, (_replicate("google/veo-3.1-fast"),), cost_credits=20),
    ModelSpec(
        "kling-v2.5-turbo-pro-t2v",
        "Kling 2.5 Turbo Pro",
        Action.VIDEO_CREATE,
        (
            _fal("fal-ai/kling-video/v2.5-turbo/pro/text-to-video"),
            _replicate("kwaivgi/kling-v2.5-turbo-pro"),
        ),
        cost_credits=15,
    ),
    ModelSpec("wan-2.5-t2v", "Wan 2.5", Action.VIDEO_CREATE, (_replicate("wan-video/wan-2.5-t2v"),), cost_credits=10),
    ModelSpec("veo-3.1-fast-i2v", "Veo 3.1 Fast (image)", Action.VIDEO_I2V, (_replicate("google/veo-3.1-fast"),), cost_credits=20),
    ModelSpec(
        "kling-v2.5-turbo-pro-i2v",
        "Kling 2.5 Turbo Pro (image)",
        Action.VIDEO_I2V,
        (
            _fal("fal-ai/kling-video/v2.5-turbo/pro/image-to-video"),
            _replicate("kwaivgi/kling-v2.5-turbo-pro"),
        ),
        cost_credits=15,
    ),
    ModelSpec("luma-modify-video", "Luma Modify", Action.VIDEO_EDIT, (_replicate("luma/modify-video"),), cost_credits=20),
    ModelSpec("topaz-video-upscale", "Topaz Video Upscale", Action.VIDEO_UPSCALE, (_replicate("topazlabs/video-upscale"),), cost_credits=15),
    # Analyze (text output)
    ModelSpec("blip-2", "BLIP-2", Action.ANALYZE_DESCRIBE, (_replicate("andreasjansson/blip-2"),), cost_credits=1),
    ModelSpec("llava-13b", "LLaVA 13B", Action.ANALYZE_DESCRIBE, (_replicate("yorickvp/llava-13b"),), cost_credits=1),
    ModelSpec("florence-2-ocr", "Florence-2 OCR", Action.ANALYZE_OCR, (_replicate("lucataco/florence-2-large"),), cost_credits=1),
    ModelSpec("clip-interrogator", "CLIP Interrogator", Action.ANALYZE_PROMPT, (_replicate("pharmapsychotic/clip-interrogator"),), cost_credits=1),
)

MODELS: dict[str, ModelSpec] = {model.id: model for model in _MODELS}


def get_model(model_id: str) -> ModelSpec | None:
    return MODELS.get(model_id)


def list_models(action: Action | None = None) -> list[ModelSpec]:
    return [m for m in _MODELS if action is None or m.action == action]
