"""Model catalog endpoint."""

from fastapi import APIRouter
from pydantic import BaseModel

from mediagen.core.domain import Action
from mediagen.providers.catalog import ModelSpec, list_models

router = APIRouter(prefix="/models", tags=["models"])


class ModelResponse(BaseModel):
    id: str
    name: str
    action: Action
    cost_credits: int
    providers: list[str]


def _to_response(model: ModelSpec) -> ModelResponse:
    return ModelResponse(
        id=model.id,
        name=model.display_name,
        action=model.action,
        cost_credits=model.cost_credits,
        providers=[entry.provider.value for entry in model.chain],
    )


@router.get("", response_model=list[ModelResponse])
async def get_models(action: Action | None = None) -> list[ModelResponse]:
    """Catalog models, optionally filtered by action."""
    return [_to_response(m) for m in list_models(action)]
