"""AWS boto3 client for describing the instance and attaching/detaching ENIs."""

from __future__ import annotations

import logging
from typing import Any

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from ..binding.models import InstanceDescription, NetworkInterfaceHandle
from ..config import AWSConfig
from ..exceptions import AttachError, DetachError, NotFoundError, ProviderQueryError
from .metadata import InstanceIdentityProvider

logger = logging.getLogger(__name__)

_NOT_FOUND_CODES = {"InvalidInstanceID.NotFound", "InvalidInstanceID.Malformed"}


class InstanceInventoryClient:
    """Thin query facade over the EC2 API for the binder."""

    def __init__(self, aws_config: AWSConfig, region: str = "", identity: InstanceIdentityProvider | None = None):
        self._config = aws_config
        self._identity = identity
        self._ec2: Any = None
        region = (aws_config.region or region).strip().lower()
        if region or identity is None:
            self._ec2 = self._build_client(region)

    def _build_client(self, region: str) -> Any:
        session_kwargs: dict[str, Any] = {"region_name": region}
        if self._config.has_static_credentials:
            session_kwargs["aws_access_key_id"] = self._config.access_key_id
            session_kwargs["aws_secret_access_key"] = self._config.secret_access_key
        elif self._config.credential_profile:
            session_kwargs["profile_name"] = self._config.credential_profile

        session = boto3.Session(**session_kwargs)
        return session.client("ec2")

    @property
    def ec2(self) -> Any:
        """The boto3 EC2 client, built on first use from the instance's region when none is configured."""
        if self._ec2 is None:
            region = self._identity.current().region
            logger.info("Using region %s from instance metadata", region)
            self._ec2 = self._build_client(region)
        return self._ec2

    # ── Instance ─────────────────────────────────────────────────────

    def describe_self(self, instance_id: str) -> InstanceDescription:
        """Describe the given instance (our own) and its attached interfaces."""
        try:
            response = self.ec2.describe_instances(InstanceIds=[instance_id])
        except ClientError as exc:
            code = _error_code(exc)
            if code in _NOT_FOUND_CODES:
                raise NotFoundError(f"Instance {instance_id} not found", error_code=code) from exc
            raise ProviderQueryError(f"describe_instances failed for {instance_id}: {exc}", error_code=code) from exc
        except BotoCoreError as exc:
            raise ProviderQueryError(f"describe_instances failed for {instance_id}: {exc}") from exc

        for reservation in response.get("Reservations", []):
            for raw in reservation.get("Instances", []):
                return InstanceDescription(
                    instance_id=raw.get("InstanceId", instance_id),
                    subnet_id=raw.get("SubnetId"),
                    interfaces=[_parse_interface(ni) for ni in raw.get("NetworkInterfaces", [])],
                )

        raise NotFoundError(f"Instance {instance_id} not found")

    def list_attached_interfaces(self, instance_id: str) -> list[NetworkInterfaceHandle]:
        return self.describe_self(instance_id).interfaces

    # ── Network interfaces ───────────────────────────────────────────

    def find_available_interfaces(self, candidate_ips: list[str], subnet_id: str) -> list[NetworkInterfaceHandle]:
        """Return free ENIs in subnet_id whose private IP is one of candidate_ips.

        An empty result is normal: every candidate may be held by another instance.
        """
        if not candidate_ips:
            return []

        interfaces: list[NetworkInterfaceHandle] = []
        try:
            paginator = self.ec2.get_paginator("describe_network_interfaces")
            pages = paginator.paginate(
                Filters=[
                    {"Name": "private-ip-address", "Values": list(candidate_ips)},
                    {"Name": "status", "Values": ["available"]},
                    {"Name": "subnet-id", "Values": [subnet_id]},
                ]
            )
            for page in pages:
                for raw in page.get("NetworkInterfaces", []):
                    interfaces.append(_parse_interface(raw))
        except ClientError as exc:
            raise ProviderQueryError(
                f"describe_network_interfaces failed: {exc}", error_code=_error_code(exc),
            ) from exc
        except BotoCoreError as exc:
            raise ProviderQueryError(f"describe_network_interfaces failed: {exc}") from exc

        logger.debug("Found %d available interfaces in subnet %s", len(interfaces), subnet_id)
        return interfaces

    def attach(self, interface_id: str, instance_id: str, device_index: int = 1) -> str | None:
        """Attach the interface and return the new attachment id."""
        try:
            response = self.ec2.attach_network_interface(
                NetworkInterfaceId=interface_id,
                InstanceId=instance_id,
                DeviceIndex=device_index,
            )
        except ClientError as exc:
            raise AttachError(
                f"Cannot attach {interface_id} to {instance_id}: {exc}", error_code=_error_code(exc),
            ) from exc
        except BotoCoreError as exc:
            raise AttachError(f"Cannot attach {interface_id} to {instance_id}: {exc}") from exc
        return response.get("AttachmentId")

    def detach(self, attachment_id: str) -> None:
        try:
            self.ec2.detach_network_interface(AttachmentId=attachment_id)
        except ClientError as exc:
            raise DetachError(f"Cannot detach {attachment_id}: {exc}", error_code=_error_code(exc)) from exc
        except BotoCoreError as exc:
            raise DetachError(f"Cannot detach {attachment_id}: {exc}") from exc


# ── Shared parsing ────────────────────────────────────────────────────


def _parse_interface(raw: dict[str, Any]) -> NetworkInterfaceHandle:
    """Parse an ENI dict from either describe_instances or describe_network_interfaces."""
    attachment = raw.get("Attachment") or {}
    return NetworkInterfaceHandle(
        interface_id=raw["NetworkInterfaceId"],
        private_ip=raw.get("PrivateIpAddress", ""),
        status=raw.get("Status", "unknown"),
        subnet_id=raw.get("SubnetId"),
        attachment_id=attachment.get("AttachmentId"),
        device_index=attachment.get("DeviceIndex"),
    )


def _error_code(exc: ClientError) -> str | None:
    return exc.response.get("Error", {}).get("Code")
