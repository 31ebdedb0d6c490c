"""Service URLs taken straight from the configuration file."""

from __future__ import annotations

import logging

from ..config import DiscoveryConfig

logger = logging.getLogger(__name__)


class StaticServiceUrlSource:
    """Reads discovery.service_urls[zone], falling back to the 'default' entry."""

    def __init__(self, config: DiscoveryConfig):
        self._config = config

    def lookup_service_urls_for_zone(self, zone: str) -> list[str]:
        urls = self._config.urls_for_zone(zone)
        logger.debug("Static service urls for zone %s: %s", zone, urls)
        return urls
