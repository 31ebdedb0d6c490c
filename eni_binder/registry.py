"""Registry recovery hooks invoked when this instance is found without its address."""

from __future__ import annotations

import logging
from typing import Protocol, runtime_checkable

logger = logging.getLogger(__name__)


@runtime_checkable
class RegistryRecovery(Protocol):
    """The membership registry operations the binder needs.

    An instance that lost its address most likely also holds a stale view of
    the registry, so the binder clears and resyncs before re-binding.
    """

    def clear_local_state(self) -> None:
        ...

    def resync_from_peers(self) -> int:
        """Pull the registry from a peer node; return the number of entries synced."""
        ...

    def resume_serving_traffic(self, count: int) -> None:
        ...


class LoggingRegistryRecovery:
    """Stand-in used when the binder runs outside a registry process."""

    def clear_local_state(self) -> None:
        logger.info("Registry clear requested (no embedded registry)")

    def resync_from_peers(self) -> int:
        logger.info("Registry resync requested (no embedded registry)")
        return 0

    def resume_serving_traffic(self, count: int) -> None:
        logger.info("Registry open for traffic with %d synced entries", count)
