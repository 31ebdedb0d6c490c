"""Pure decision logic: is this instance bound, and which free ENI should it take."""

from __future__ import annotations

from collections.abc import Sequence

from .models import NetworkInterfaceHandle


def is_already_bound(attached: Sequence[NetworkInterfaceHandle], candidates: Sequence[str]) -> bool:
    """True iff any attached interface carries one of the candidate IPs."""
    return bound_interface(attached, candidates) is not None


def bound_interface(
    attached: Sequence[NetworkInterfaceHandle],
    candidates: Sequence[str],
) -> NetworkInterfaceHandle | None:
    """Return the attached interface holding a candidate IP (highest priority first)."""
    by_ip = {ni.private_ip: ni for ni in attached if ni.private_ip}
    for ip in candidates:
        if ip in by_ip:
            return by_ip[ip]
    return None


def select_interface_to_bind(
    available: Sequence[NetworkInterfaceHandle],
    candidates: Sequence[str],
) -> NetworkInterfaceHandle | None:
    """Pick the free interface whose IP comes first in the candidate order.

    Every competing instance ranks the pool the same way, so the choice is
    repeatable across retries. Returns None when nothing is free.
    """
    priority = {ip: index for index, ip in reversed(list(enumerate(candidates)))}
    eligible = [ni for ni in available if ni.private_ip in priority]
    if not eligible:
        return None
    return min(eligible, key=lambda ni: (priority[ni.private_ip], ni.interface_id))
