"""Kind-to-adapter dispatch."""

from __future__ import annotations

import logging
from collections.abc import Iterable

from reelstudio.config import Settings
from reelstudio.errors import ProviderUnavailable
from reelstudio.jobs.models import JobKind
from reelstudio.providers.analysis import AnalysisProvider
from reelstudio.providers.avatar import AvatarProvider
from reelstudio.providers.base import IProviderAdapter
from reelstudio.providers.dubbing import DubbingProvider
from reelstudio.uploads import UploadStore

logger = logging.getLogger(__name__)


class ProviderRegistry:
    """Maps each job kind to the adapter that backs it."""

    def __init__(self, adapters: Iterable[IProviderAdapter]) -> None:
        self._adapters: dict[JobKind, IProviderAdapter] = {}
        for adapter in adapters:
            self._adapters[JobKind(adapter.kind)] = adapter

        available = [a.name for a in self._adapters.values() if a.is_available]
        logger.info(
            "ProviderRegistry initialized with %d available provider(s): %s",
            len(available),
            ", ".join(available) if available else "(none)",
        )

    def get(self, kind: JobKind) -> IProviderAdapter:
        """Return the adapter for ``kind``.

        Raises:
            ProviderUnavailable: If no adapter is registered for the kind.
        """
        adapter = self._adapters.get(JobKind(kind))
        if adapter is None:
            raise ProviderUnavailable(f"no provider registered for {JobKind(kind).value}")
        return adapter

    def kinds(self) -> list[JobKind]:
        return list(self._adapters)


def build_registry(settings: Settings, uploads: UploadStore | None = None) -> ProviderRegistry:
    """Create the registry of real providers from settings.

    ``uploads`` lets dubbing jobs read media clients uploaded beforehand.
    """
    http_opts = {
        "timeout": settings.provider_timeout,
        "max_retries": settings.provider_max_retries,
    }
    return ProviderRegistry(
        [
            AnalysisProvider(
                api_key=settings.anthropic_api_key,
                model=settings.analysis_model,
                max_transcript_chars=settings.max_transcript_chars,
                **http_opts,
            ),
            DubbingProvider(
                api_key=settings.elevenlabs_api_key,
                base_url=settings.elevenlabs_base_url,
                uploads=uploads,
                retry_delay=settings.provider_retry_delay,
                **http_opts,
            ),
            AvatarProvider(
                api_key=settings.heygen_api_key,
                base_url=settings.heygen_base_url,
                max_text_chars=settings.max_avatar_text_chars,
                retry_delay=settings.provider_retry_delay,
                **http_opts,
            ),
        ]
    )
