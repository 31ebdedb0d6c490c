"""Current instance identity, read from the local EC2 instance metadata service."""

from __future__ import annotations

import logging
from typing import Protocol, runtime_checkable

import requests

from ..binding.models import InstanceIdentity
from ..config import InstanceConfig, MetadataConfig
from ..exceptions import ProviderQueryError

logger = logging.getLogger(__name__)


@runtime_checkable
class InstanceIdentityProvider(Protocol):
    def current(self) -> InstanceIdentity:
        """Return this instance's id and availability zone."""
        ...


class StaticIdentityProvider:
    """Identity pinned in configuration (tests, or hosts with IMDS disabled)."""

    def __init__(self, config: InstanceConfig):
        self._identity = InstanceIdentity(config.instance_id, config.availability_zone)

    def current(self) -> InstanceIdentity:
        return self._identity


class MetadataIdentityProvider:
    """IMDSv2 client: fetch a session token, then read instance-id and placement."""

    def __init__(self, config: MetadataConfig):
        self._base = config.base_url.rstrip("/")
        self._timeout = config.timeout
        self._token_ttl = config.token_ttl_seconds
        self._session = requests.Session()

    def current(self) -> InstanceIdentity:
        token = self._token()
        headers = {"X-aws-ec2-metadata-token": token}
        instance_id = self._get("/latest/meta-data/instance-id", headers)
        zone = self._get("/latest/meta-data/placement/availability-zone", headers)
        return InstanceIdentity(instance_id=instance_id, availability_zone=zone)

    def _token(self) -> str:
        try:
            resp = self._session.put(
                f"{self._base}/latest/api/token",
                headers={"X-aws-ec2-metadata-token-ttl-seconds": str(self._token_ttl)},
                timeout=self._timeout,
            )
            resp.raise_for_status()
        except requests.RequestException as exc:
            raise ProviderQueryError(f"Instance metadata token request failed: {exc}") from exc
        return resp.text.strip()

    def _get(self, path: str, headers: dict[str, str]) -> str:
        try:
            resp = self._session.get(f"{self._base}{path}", headers=headers, timeout=self._timeout)
            resp.raise_for_status()
        except requests.RequestException as exc:
            raise ProviderQueryError(f"Instance metadata GET {path} failed: {exc}") from exc
        value = resp.text.strip()
        if not value:
            raise ProviderQueryError(f"Instance metadata GET {path} returned an empty body")
        return value
