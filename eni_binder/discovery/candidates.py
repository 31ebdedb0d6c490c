"""Turns the zone's service URLs into the ordered list of candidate IPv4 addresses."""

from __future__ import annotations

import ipaddress
import logging
from urllib.parse import urlsplit

from ..exceptions import MalformedCandidateError, NoCandidatesError
from . import ServiceUrlSource

logger = logging.getLogger(__name__)


class CandidateAddressResolver:
    """Resolves candidate addresses for a zone from a ServiceUrlSource.

    Hosts that are already IPv4 literals are used verbatim. Anything else is
    read as an internal hostname of the form ``ip-A-B-C-D.<domain>``.
    """

    def __init__(self, source: ServiceUrlSource):
        self._source = source

    def resolve_candidates(self, zone: str) -> list[str]:
        """Return the zone's candidate IPs, highest priority first.

        Raises NoCandidatesError when discovery finds nothing and
        MalformedCandidateError when any entry cannot be decoded.
        """
        raw_candidates = self._source.lookup_service_urls_for_zone(zone)
        if not raw_candidates:
            raise NoCandidatesError(zone)

        ips: list[str] = []
        for raw in raw_candidates:
            ip = candidate_ip(raw)
            if ip not in ips:
                ips.append(ip)

        logger.debug("Candidate ips for zone %s: %s", zone, ips, extra={"zone": zone, "candidates": ips})
        return ips


def candidate_ip(raw: str) -> str:
    """Reduce one service URL (or bare hostname) to its IPv4 address."""
    host = _host_of(raw)
    if _is_ipv4(host):
        return host

    # ip-172-31-55-172.ec2.internal -> ["ip", "172", "31", "55", "172"]
    tokens = host.split(".", 1)[0].split("-")
    ip = ".".join(tokens[1:5])
    if len(tokens) < 5 or not _is_ipv4(ip):
        raise MalformedCandidateError(
            f"Illegal internal hostname {host} translated to '{ip}'", candidate=raw,
        )
    return ip


def _host_of(raw: str) -> str:
    text = raw.strip()
    try:
        parts = urlsplit(text if "://" in text else f"//{text}")
        host = parts.hostname
    except ValueError as exc:
        raise MalformedCandidateError(f"Cannot parse service url '{raw}': {exc}", candidate=raw) from exc
    if not host:
        raise MalformedCandidateError(f"Service url '{raw}' has no host", candidate=raw)
    return host


def _is_ipv4(value: str) -> bool:
    try:
        ipaddress.IPv4Address(value)
    except ValueError:
        return False
    return True
