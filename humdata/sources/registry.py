"""In-memory registry of source descriptors."""

from __future__ import annotations

import logging
import threading
from dataclasses import replace
from typing import Iterable

from humdata.errors import UnknownSourceError
from humdata.sources.schemas import SourceDescriptor

logger = logging.getLogger(__name__)


class SourceRegistry:
    """Table of provider descriptors keyed by source id.

    Pure configuration: the only mutation after construction is the
    operator toggle set_enabled().
    """

    def __init__(self, descriptors: Iterable[SourceDescriptor] = ()) -> None:
        self._sources: dict[str, SourceDescriptor] = {}
        self._lock = threading.Lock()
        for descriptor in descriptors:
            self.register(descriptor)

    @classmethod
    def from_descriptors(cls, *descriptors: SourceDescriptor) -> "SourceRegistry":
        return cls(descriptors)

    def register(self, descriptor: SourceDescriptor) -> None:
        """Add a descriptor. Ids must be unique."""
        with self._lock:
            if descriptor.id in self._sources:
                raise ValueError(f"Duplicate source id: {descriptor.id}")
            self._sources[descriptor.id] = descriptor

    def get(self, source_id: str) -> SourceDescriptor:
        """
        Look up a source descriptor.

        Raises:
            UnknownSourceError: If no source is registered under source_id
        """
        try:
            return self._sources[source_id]
        except KeyError:
            raise UnknownSourceError(
                f"Data source {source_id} not configured", source_id=source_id
            ) from None

    def list(self) -> list[SourceDescriptor]:
        """All descriptors in registration order."""
        return list(self._sources.values())

    def set_enabled(self, source_id: str, enabled: bool) -> SourceDescriptor:
        """Toggle a source on or off and return the updated descriptor."""
        with self._lock:
            current = self.get(source_id)
            updated = replace(current, enabled=enabled)
            self._sources[source_id] = updated
        logger.info(f"Source {source_id} {'enabled' if enabled else 'disabled'}")
        return updated

    def enabled_sources(self) -> list[str]:
        """Ids of enabled sources, most preferred (lowest priority) first."""
        enabled = [d for d in self._sources.values() if d.enabled]
        enabled.sort(key=lambda d: (d.priority, d.id))
        return [d.id for d in enabled]

    def __contains__(self, source_id: object) -> bool:
        return source_id in self._sources

    def __len__(self) -> int:
        return len(self._sources)
