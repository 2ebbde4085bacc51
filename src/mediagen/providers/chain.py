"""Provider chain resolution.

The order of the resolved chain is the fallback order. Runtime filters from
ProviderConfig are applied in sequence: fal_only, skip_providers,
primary_provider.
"""

from mediagen.app.config import ProviderConfig, get_settings
from mediagen.providers.catalog import ChainEntry, ModelSpec


class NoProvidersError(Exception):
    """Raised when a model has no usable provider."""


def resolve_chain(
    model: ModelSpec, config: ProviderConfig | None = None
) -> list[ChainEntry]:
    config = config or get_settings().providers

    if not model.chain:
        raise NoProvidersError(f"No providers configured for model {model.id}")

    chain = list(model.chain)

    if config.fal_only:
        chain = [entry for entry in chain if entry.provider == "fal"]

    if config.skip_providers:
        skip = {name.strip() for name in config.skip_providers}
        chain = [entry for entry in chain if entry.provider not in skip]

    if config.primary_provider:
        primary = config.primary_provider.strip()
        chain = [e for e in chain if e.provider == primary] + [
            e for e in chain if e.provider != primary
        ]

    if not chain:
        raise NoProvidersError(
            f"No providers available for model {model.id} after filtering"
        )
    return chain
