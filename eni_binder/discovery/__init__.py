"""Service URL discovery: the Protocol every candidate source satisfies."""

from __future__ import annotations

from typing import Protocol, runtime_checkable


@runtime_checkable
class ServiceUrlSource(Protocol):
    """Protocol for anything that can list the registry service URLs of a zone."""

    def lookup_service_urls_for_zone(self, zone: str) -> list[str]:
        """Return the service URLs configured for the zone, highest priority first."""
        ...
