"""Provider registry: stores configured completion provider instances."""

from branchwise.providers.base import LLMProvider

_providers: dict[str, LLMProvider] = {}


def register_provider(provider: LLMProvider) -> None:
    """Register a provider instance by name."""
    _providers[provider.name] = provider


def get_provider(name: str) -> LLMProvider:
    """Get a registered provider by name. Raises ProviderNotFoundError if not found."""
    try:
        return _providers[name]
    except KeyError:
        available = ", ".join(_providers.keys()) or "(none)"
        raise ProviderNotFoundError(
            f"Provider '{name}' not registered. Available: {available}"
        )


def get_all_providers() -> list[LLMProvider]:
    return list(_providers.values())


def get_default_provider(preferred: str) -> LLMProvider:
    """The preferred provider, or the first registered one when it is absent.

    Raises ProviderNotFoundError only when no provider is registered.
    """
    if preferred in _providers:
        return _providers[preferred]
    if not _providers:
        raise ProviderNotFoundError("No completion provider is registered")
    return next(iter(_providers.values()))


def clear_providers() -> None:
    """Clear all registered providers. Used in tests."""
    _providers.clear()


class ProviderNotFoundError(Exception):
    pass
