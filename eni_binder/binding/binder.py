"""ENI binder: keeps this instance attached to one of its zone's fixed-address interfaces.

Candidate interfaces are found through the zone's service URLs (static
configuration or DNS TXT records); each URL host is either the ENI's private
IP or its internal hostname, e.g. ``ip-172-31-55-172.ec2.internal``.

Lifecycle:
    start()     bounded bind attempts, then arm the periodic pass
    run_pass()  re-check; if unbound, resync the registry and bind again
    shutdown()  cancel the timer, wait out a running pass, then bounded detach attempts

There is no lock across instances. Competing instances pick from the pool
in the same order; a loser's attach is rejected by EC2 and it tries again on
its next pass.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable

from ..aws.ec2_client import InstanceInventoryClient
from ..aws.metadata import InstanceIdentityProvider
from ..config import BindingConfig
from ..discovery.candidates import CandidateAddressResolver
from ..exceptions import ProviderQueryError
from ..registry import RegistryRecovery
from .decision import bound_interface, select_interface_to_bind
from .models import BinderState, InstanceDescription, InstanceIdentity, NetworkInterfaceHandle
from .retry import RetryOutcome, RetryPolicy, retry
from .scheduler import Scheduler, TimerScheduler

logger = logging.getLogger(__name__)


class ElasticNetworkInterfaceBinder:
    """Binds, re-checks and unbinds the instance's fixed-address ENI."""

    def __init__(
        self,
        config: BindingConfig,
        identity: InstanceIdentityProvider,
        resolver: CandidateAddressResolver,
        inventory: InstanceInventoryClient,
        registry: RegistryRecovery,
        scheduler: Scheduler | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._config = config
        self._identity = identity
        self._resolver = resolver
        self._inventory = inventory
        self._registry = registry
        self._scheduler = scheduler if scheduler is not None else TimerScheduler()
        self._retry_policy = RetryPolicy(
            attempts=config.rebind_retries,
            delay_seconds=config.retry_sleep_ms / 1000.0,
            sleep=sleep,
        )
        self._lock = threading.Lock()
        self._pass_lock = threading.Lock()  # held for a whole pass and for the shutdown unbind loop
        self._state = BinderState.UNBOUND
        self._started = False

    @property
    def state(self) -> BinderState:
        return self._state

    # ── Lifecycle ───────────────────────────────────────────────────

    def start(self) -> RetryOutcome:
        """Try to bind up to rebind_retries times, then arm the periodic pass.

        Never raises: an instance that could not bind keeps running and the
        periodic pass keeps trying.
        """
        with self._lock:
            if self._started:
                logger.warning("Binder already started")
                return RetryOutcome(succeeded=self._state is BinderState.BOUND, attempts=0)
            self._started = True

        outcome = retry(self._retry_policy, self._confirm_or_bind, "Bind to IP")
        if outcome.succeeded:
            self._set_state(BinderState.BOUND)
        else:
            self._set_state(BinderState.UNBOUND)
            logger.error(
                "Could not bind to IP after %d attempts, will keep retrying every %d ms",
                outcome.attempts, self._config.retry_interval_ms_when_unbound,
            )

        self._schedule_next(found_bound=False)
        return outcome

    def shutdown(self) -> RetryOutcome:
        """Cancel the periodic pass and detach our ENI. Never raises.

        Waits for a pass that is already running, so no attach can land after
        the detach.
        """
        with self._lock:
            if self._state is BinderState.SHUTTING_DOWN:
                logger.debug("Binder already shutting down")
                return RetryOutcome(succeeded=True, attempts=0)
            self._state = BinderState.SHUTTING_DOWN
        logger.info("Binder shutting down", extra={"state": BinderState.SHUTTING_DOWN.value})
        self._scheduler.cancel()

        with self._pass_lock:
            outcome = retry(self._retry_policy, self._unbind_attempt, "Unbind IP")
        if not outcome.succeeded:
            logger.warning("Cannot unbind the IP from the instance after %d attempts", outcome.attempts)
        return outcome

    def run_pass(self) -> None:
        """One periodic reconciliation pass; always re-arms unless shutting down."""
        with self._pass_lock:
            if self._state is BinderState.SHUTTING_DOWN:
                return

            found_bound = False
            try:
                identity, candidates, description, held = self._inspect()
                found_bound = held is not None
                if found_bound:
                    self._set_state(BinderState.BOUND)
                    return

                self._set_state(BinderState.UNBOUND)
                self._recover_registry()
                if self._state is BinderState.SHUTTING_DOWN:
                    logger.info("Shutdown began during the pass, not binding")
                    return
                self._attach_free(identity, candidates, description)
            except Exception:
                logger.exception("Could not bind to IP")
            finally:
                self._schedule_next(found_bound)

    def bind_once(self) -> bool:
        """Single bound-check-then-bind, errors propagate. Used by ``--once``."""
        return self._confirm_or_bind()

    # ── Operations ──────────────────────────────────────────────────

    def already_bound(self) -> bool:
        """True if one of this zone's candidate IPs is attached to this instance."""
        return self._inspect()[3] is not None

    def bind(self) -> NetworkInterfaceHandle | None:
        """Attach the highest-priority free candidate ENI in our subnet.

        Returns the attached interface, or None when every candidate is taken.
        """
        identity = self._identity.current()
        candidates = self._resolver.resolve_candidates(identity.availability_zone)
        description = self._inventory.describe_self(identity.instance_id)
        return self._attach_free(identity, candidates, description)

    def unbind(self) -> NetworkInterfaceHandle | None:
        """Detach the candidate ENI attached to this instance, if any."""
        identity = self._identity.current()
        attached = self._inventory.list_attached_interfaces(identity.instance_id)
        candidates = self._resolver.resolve_candidates(identity.availability_zone)

        held = bound_interface(attached, candidates)
        if held is None:
            logger.info("Instance %s holds none of the candidate ips, nothing to unbind", identity.instance_id)
            return None
        if not held.attachment_id:
            logger.warning("Interface %s has no attachment id, cannot detach", held.interface_id)
            return None

        self._inventory.detach(held.attachment_id)
        logger.info(
            "Detached %s (%s) from instance %s",
            held.interface_id, held.private_ip, identity.instance_id,
            extra={"interface_id": held.interface_id, "attachment_id": held.attachment_id},
        )
        return held

    # ── Internals ───────────────────────────────────────────────────

    def _inspect(self) -> tuple[InstanceIdentity, list[str], InstanceDescription, NetworkInterfaceHandle | None]:
        """Resolve candidates and describe this instance once; return the held candidate ENI, if any."""
        identity = self._identity.current()
        candidates = self._resolver.resolve_candidates(identity.availability_zone)
        description = self._inventory.describe_self(identity.instance_id)

        held = bound_interface(description.interfaces, candidates)
        if held is not None:
            logger.info(
                "My instance %s seems to be already associated with the ip %s",
                identity.instance_id, held.private_ip,
                extra={"instance_id": identity.instance_id, "private_ip": held.private_ip},
            )
        return identity, candidates, description, held

    def _attach_free(
        self,
        identity: InstanceIdentity,
        candidates: list[str],
        description: InstanceDescription,
    ) -> NetworkInterfaceHandle | None:
        if not description.subnet_id:
            raise ProviderQueryError(f"Instance {identity.instance_id} reports no subnet")

        zone = identity.availability_zone
        available = self._inventory.find_available_interfaces(candidates, description.subnet_id)
        selected = select_interface_to_bind(available, candidates)
        if selected is None:
            logger.info(
                "No ip is free to be associated with this instance. Candidate ips are: %s for zone: %s",
                candidates, zone, extra={"zone": zone, "candidates": candidates},
            )
            return None

        attachment_id = self._inventory.attach(
            selected.interface_id, identity.instance_id, self._config.device_index,
        )
        logger.info(
            "Attached %s (%s) to instance %s",
            selected.interface_id, selected.private_ip, identity.instance_id,
            extra={
                "instance_id": identity.instance_id,
                "interface_id": selected.interface_id,
                "private_ip": selected.private_ip,
                "attachment_id": attachment_id,
            },
        )
        return selected

    def _confirm_or_bind(self) -> bool:
        identity, candidates, description, held = self._inspect()
        if held is not None:
            return True
        return self._attach_free(identity, candidates, description) is not None

    def _unbind_attempt(self) -> bool:
        self.unbind()
        return True

    def _recover_registry(self) -> None:
        self._registry.clear_local_state()
        count = self._registry.resync_from_peers()
        self._registry.resume_serving_traffic(count)

    def _set_state(self, state: BinderState) -> None:
        with self._lock:
            if self._state is BinderState.SHUTTING_DOWN or self._state is state:
                return
            previous, self._state = self._state, state
        logger.info("Binder state %s -> %s", previous.value, state.value, extra={"state": state.value})

    def _schedule_next(self, found_bound: bool) -> None:
        interval_ms = (
            self._config.retry_interval_ms if found_bound else self._config.retry_interval_ms_when_unbound
        )
        with self._lock:
            if self._state is BinderState.SHUTTING_DOWN:
                return
            logger.debug(
                "Next binding check in %d ms", interval_ms, extra={"delay_seconds": interval_ms / 1000.0},
            )
            self._scheduler.schedule(interval_ms / 1000.0, self.run_pass)
