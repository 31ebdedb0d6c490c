"""Data models for instances, network interfaces and binder state."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field


class BinderState(enum.Enum):
    UNBOUND = "unbound"
    BOUND = "bound"
    SHUTTING_DOWN = "shutting_down"


@dataclass(frozen=True)
class InstanceIdentity:
    """The running instance as reported by local instance metadata."""

    instance_id: str
    availability_zone: str

    @property
    def region(self) -> str:
        """Region is the AZ string minus the trailing letter, e.g. 'us-east-1a' -> 'us-east-1'."""
        return self.availability_zone[:-1] if self.availability_zone else ""


@dataclass(frozen=True)
class NetworkInterfaceHandle:
    """A single ENI, either free ("available") or attached to some instance."""

    interface_id: str
    private_ip: str
    status: str = "unknown"
    subnet_id: str | None = None
    attachment_id: str | None = None  # set only while attached
    device_index: int | None = None

    @property
    def is_available(self) -> bool:
        return self.status == "available"


@dataclass(frozen=True)
class InstanceDescription:
    """The provider's view of this instance: its subnet and attached interfaces."""

    instance_id: str
    subnet_id: str | None
    interfaces: list[NetworkInterfaceHandle] = field(default_factory=list)
