"""External provider adapters."""

from reelstudio.providers.analysis import AnalysisProvider
from reelstudio.providers.avatar import AvatarProvider
from reelstudio.providers.base import IProviderAdapter, ProviderHttpClient
from reelstudio.providers.dubbing import DubbingProvider
from reelstudio.providers.registry import ProviderRegistry, build_registry

__all__ = [
    "AnalysisProvider",
    "AvatarProvider",
    "DubbingProvider",
    "IProviderAdapter",
    "ProviderHttpClient",
    "ProviderRegistry",
    "build_registry",
]
