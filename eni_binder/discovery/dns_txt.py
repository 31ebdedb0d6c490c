"""Service URL discovery through a chain of DNS TXT records.

Record layout:
    txt.us-east-1.eureka.example.com   = "us-east-1a.eureka.example.com" "us-east-1b.eureka.example.com"
    txt.us-east-1a.eureka.example.com  = "ip-10-0-1-4.ec2.internal" "ip-10-0-1-5.ec2.internal"

The region record lists one name per zone; the zone record lists the hosts
whose private addresses make up that zone's pool.
"""

from __future__ import annotations

import logging

import dns.exception
import dns.resolver

from ..config import DiscoveryConfig

logger = logging.getLogger(__name__)


class DnsTxtServiceUrlSource:
    """Resolves txt.<region>.<dns_name> and then txt.<zone record> for the hosts."""

    def __init__(self, config: DiscoveryConfig, region: str):
        self._config = config
        self._region = region

    def lookup_service_urls_for_zone(self, zone: str) -> list[str]:
        region = self._region or zone[:-1]
        region_record = f"txt.{region}.{self._config.dns_name}"
        zone_records = self._txt_values(region_record)
        if not zone_records:
            return []

        matching = [r for r in zone_records if r.split(".", 1)[0] == zone]
        if not matching:
            logger.warning(
                "No TXT entry in %s matches zone %s, using all %d zone records",
                region_record, zone, len(zone_records),
            )
            matching = zone_records

        urls: list[str] = []
        for record in matching:
            for host in self._txt_values(f"txt.{record}"):
                urls.append(self._service_url(host))
        logger.debug("DNS service urls for zone %s: %s", zone, urls)
        return urls

    def _service_url(self, host: str) -> str:
        context = self._config.context.strip("/")
        path = f"/{context}/" if context else "/"
        return f"http://{host}:{self._config.port}{path}"

    @staticmethod
    def _txt_values(name: str) -> list[str]:
        """Return every whitespace-separated value across the TXT answers for name."""
        try:
            answer = dns.resolver.resolve(name, "TXT")
        except dns.exception.DNSException as exc:
            logger.warning("TXT lookup for %s failed: %s", name, exc)
            return []

        values: list[str] = []
        for rdata in answer:
            for chunk in rdata.strings:
                text = chunk.decode() if isinstance(chunk, bytes) else chunk
                values.extend(text.split())
        return values
