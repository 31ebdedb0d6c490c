"""Process wiring: build collaborators, start the binder, unbind on SIGTERM/SIGINT."""

from __future__ import annotations

import logging
import signal
import threading
from types import FrameType

from .aws.ec2_client import InstanceInventoryClient
from .aws.metadata import InstanceIdentityProvider, MetadataIdentityProvider, StaticIdentityProvider
from .binding.binder import ElasticNetworkInterfaceBinder
from .binding.retry import RetryOutcome
from .config import AppConfig
from .discovery import ServiceUrlSource
from .discovery.candidates import CandidateAddressResolver
from .discovery.dns_txt import DnsTxtServiceUrlSource
from .discovery.static_urls import StaticServiceUrlSource
from .registry import LoggingRegistryRecovery, RegistryRecovery

logger = logging.getLogger(__name__)


class Daemon:
    """Runs the binder until a shutdown signal arrives."""

    def __init__(self, config: AppConfig, registry: RegistryRecovery | None = None):
        self._config = config
        self._stop = threading.Event()

        identity = self._build_identity(config)
        # Empty region: the URL source and EC2 client derive it from the zone on first use.
        region = config.aws.region
        self.binder = ElasticNetworkInterfaceBinder(
            config=config.binding,
            identity=identity,
            resolver=CandidateAddressResolver(self._build_url_source(config, region)),
            inventory=InstanceInventoryClient(config.aws, region=region, identity=identity),
            registry=registry if registry is not None else LoggingRegistryRecovery(),
        )

    @staticmethod
    def _build_identity(config: AppConfig) -> InstanceIdentityProvider:
        if config.instance.is_static:
            return StaticIdentityProvider(config.instance)
        return MetadataIdentityProvider(config.metadata)

    @staticmethod
    def _build_url_source(config: AppConfig, region: str) -> ServiceUrlSource:
        """DNS TXT records or the static per-zone list, per discovery.use_dns."""
        if config.discovery.use_dns:
            return DnsTxtServiceUrlSource(config.discovery, region)
        return StaticServiceUrlSource(config.discovery)

    def run_once(self) -> bool:
        """Check and bind a single time without arming the periodic pass."""
        return self.binder.bind_once()

    def unbind(self) -> RetryOutcome:
        return self.binder.shutdown()

    def run(self) -> None:
        """Start the binder and block until SIGTERM/SIGINT, then unbind."""
        self._install_signal_handlers()
        logger.info(
            "Binder starting (retries=%d, interval=%dms, unbound interval=%dms)",
            self._config.binding.rebind_retries,
            self._config.binding.retry_interval_ms,
            self._config.binding.retry_interval_ms_when_unbound,
        )
        self.binder.start()

        while not self._stop.wait(timeout=1.0):
            pass

        self.binder.shutdown()
        logger.info("Binder stopped")

    def stop(self) -> None:
        self._stop.set()

    def _install_signal_handlers(self) -> None:
        signal.signal(signal.SIGTERM, self._handle_shutdown)
        signal.signal(signal.SIGINT, self._handle_shutdown)

    def _handle_shutdown(self, signum: int, frame: FrameType | None) -> None:
        sig_name = signal.Signals(signum).name
        logger.info("Received %s, shutting down", sig_name)
        self._stop.set()
