from .base import Provider, ProviderRegistry
from .claude import ClaudeProvider
from .codex import CodexProvider
from .cursor import CursorProvider
from .kimi import KimiProvider
from .kimi_k2 import KimiK2Provider
from .zai import ZaiProvider

# registration order is display order and "first authenticated" order
PROVIDER_CLASSES = (
    ClaudeProvider,
    CodexProvider,
    CursorProvider,
    ZaiProvider,
    KimiProvider,
    KimiK2Provider,
)


def build_registry(store, http=None) -> ProviderRegistry:
    registry = ProviderRegistry()
    for cls in PROVIDER_CLASSES:
        registry.register(cls(store, http=http))
    return registry


__all__ = [
    "Provider", "ProviderRegistry", "PROVIDER_CLASSES", "build_registry",
    "ClaudeProvider", "CodexProvider", "CursorProvider",
    "KimiProvider", "KimiK2Provider", "ZaiProvider",
]
