"""Tests for the ENI binder lifecycle: start, periodic pass, shutdown."""

from __future__ import annotations

import logging
import threading
from unittest.mock import MagicMock

import pytest

from eni_binder.binding.binder import ElasticNetworkInterfaceBinder
from eni_binder.binding.models import BinderState, InstanceDescription, InstanceIdentity, NetworkInterfaceHandle
from eni_binder.config import BindingConfig
from eni_binder.exceptions import AttachError, DetachError, NoCandidatesError, ProviderQueryError

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

CANDIDATES = ["10.0.1.4", "10.0.1.5"]
IDENTITY = InstanceIdentity(instance_id="i-abc123", availability_zone="us-east-1a")
PRIMARY = NetworkInterfaceHandle("eni-primary", "10.0.1.200", "in-use", "subnet-1", "eni-attach-0", 0)

CONFIG = BindingConfig(
    rebind_retries=3,
    retry_interval_ms=300_000,
    retry_interval_ms_when_unbound=60_000,
    retry_sleep_ms=1000,
)


class FakeScheduler:
    """Manually driven scheduler that records into a shared event log."""

    def __init__(self, events: list):
        self.events = events
        self.pending: list[tuple[float, object]] = []
        self.cancelled = False

    def schedule(self, delay_seconds, callback):
        self.events.append(("schedule", delay_seconds))
        self.pending = [(delay_seconds, callback)]

    def cancel(self):
        self.events.append(("cancel",))
        self.cancelled = True
        self.pending = []

    def fire(self):
        _, callback = self.pending.pop()
        callback()

    @property
    def next_delay(self):
        return self.pending[0][0] if self.pending else None


def _attached(ip="10.0.1.4", eni_id="eni-1", attachment_id="eni-attach-1"):
    return NetworkInterfaceHandle(eni_id, ip, "in-use", "subnet-1", attachment_id, 1)


def _available(ip, eni_id):
    return NetworkInterfaceHandle(eni_id, ip, "available", "subnet-1")


class Harness:
    def __init__(self, attached=None, available=None, candidates=None):
        self.events: list = []
        self.identity = MagicMock()
        self.identity.current.return_value = IDENTITY
        self.resolver = MagicMock()
        self.resolver.resolve_candidates.return_value = list(candidates or CANDIDATES)
        self.inventory = MagicMock()
        self.attached = list(attached if attached is not None else [PRIMARY])
        self.inventory.list_attached_interfaces.side_effect = lambda iid: list(self.attached)
        self.inventory.describe_self.side_effect = lambda iid: InstanceDescription(iid, "subnet-1", list(self.attached))
        self.inventory.find_available_interfaces.return_value = list(available or [])
        self.inventory.attach.return_value = "eni-attach-new"
        self.inventory.detach.side_effect = lambda aid: self.events.append(("detach", aid))
        self.registry = MagicMock()
        self.registry.resync_from_peers.return_value = 7
        self.scheduler = FakeScheduler(self.events)
        self.sleep = MagicMock()
        self.binder = ElasticNetworkInterfaceBinder(
            config=CONFIG,
            identity=self.identity,
            resolver=self.resolver,
            inventory=self.inventory,
            registry=self.registry,
            scheduler=self.scheduler,
            sleep=self.sleep,
        )


# ---------------------------------------------------------------------------
# Tests
# ---------------------------------------------------------------------------


class TestAlreadyBound:
    def test_true_when_candidate_attached(self):
        h = Harness(attached=[PRIMARY, _attached("10.0.1.5")])
        assert h.binder.already_bound() is True
        h.resolver.resolve_candidates.assert_called_with("us-east-1a")
        h.inventory.describe_self.assert_called_with("i-abc123")

    def test_false_with_only_primary(self):
        assert Harness().binder.already_bound() is False


class TestBind:
    def test_attaches_highest_priority_free_interface(self):
        h = Harness(available=[_available("10.0.1.5", "eni-5"), _available("10.0.1.4", "eni-4")])
        selected = h.binder.bind()
        assert selected.interface_id == "eni-4"
        h.inventory.find_available_interfaces.assert_called_once_with(CANDIDATES, "subnet-1")
        h.inventory.attach.assert_called_once_with("eni-4", "i-abc123", 1)

    def test_nothing_free(self):
        h = Harness(available=[])
        assert h.binder.bind() is None
        h.inventory.attach.assert_not_called()

    def test_missing_subnet_raises(self):
        h = Harness()
        h.inventory.describe_self.side_effect = lambda iid: InstanceDescription(iid, None, [])
        with pytest.raises(ProviderQueryError, match="subnet"):
            h.binder.bind()


class TestUnbind:
    def test_detaches_candidate_attachment(self):
        h = Harness(attached=[PRIMARY, _attached("10.0.1.4", attachment_id="eni-attach-7")])
        held = h.binder.unbind()
        assert held.interface_id == "eni-1"
        h.inventory.detach.assert_called_once_with("eni-attach-7")

    def test_nothing_bound(self):
        h = Harness()
        assert h.binder.unbind() is None
        h.inventory.detach.assert_not_called()


class TestStart:
    def test_startup_success_attaches_once_with_device_index_1(self):
        h = Harness(available=[_available("10.0.1.4", "eni-4")])

        outcome = h.binder.start()

        assert outcome.succeeded
        h.inventory.attach.assert_called_once_with("eni-4", "i-abc123", 1)
        assert h.binder.state is BinderState.BOUND
        assert h.scheduler.next_delay == 60.0
        h.sleep.assert_not_called()

    def test_already_bound_makes_no_attach(self):
        h = Harness(attached=[PRIMARY, _attached()])
        assert h.binder.start().succeeded
        h.inventory.attach.assert_not_called()

    def test_startup_exhaustion_does_not_raise(self):
        h = Harness()
        h.inventory.describe_self.side_effect = ProviderQueryError("throttled")

        outcome = h.binder.start()

        assert not outcome.succeeded
        assert outcome.attempts == 3
        assert isinstance(outcome.last_error, ProviderQueryError)
        assert h.sleep.call_count == 2
        h.sleep.assert_called_with(1.0)
        assert h.binder.state is BinderState.UNBOUND
        # Still armed, at the unbound interval
        assert h.scheduler.next_delay == 60.0

    def test_nothing_free_retries_then_arms_timer(self):
        h = Harness(available=[])
        outcome = h.binder.start()
        assert not outcome.succeeded
        assert h.inventory.find_available_interfaces.call_count == 3
        assert h.scheduler.next_delay == 60.0

    def test_retry_after_attach_race(self):
        h = Harness(available=[_available("10.0.1.4", "eni-4")])
        h.inventory.attach.side_effect = [AttachError("in use"), "eni-attach-new"]
        assert h.binder.start().succeeded
        assert h.inventory.attach.call_count == 2

    def test_second_start_is_noop(self):
        h = Harness(attached=[PRIMARY, _attached()])
        h.binder.start()
        h.binder.start()
        assert h.events.count(("schedule", 60.0)) == 1


class TestRunPass:
    def test_bound_pass_reschedules_at_bound_interval(self):
        h = Harness(attached=[PRIMARY, _attached()])
        h.binder.run_pass()
        assert h.scheduler.next_delay == 300.0
        h.registry.clear_local_state.assert_not_called()

    def test_two_bound_passes_make_no_attach_or_detach(self):
        h = Harness(attached=[PRIMARY, _attached()])
        h.binder.run_pass()
        h.scheduler.fire()
        h.inventory.attach.assert_not_called()
        h.inventory.detach.assert_not_called()
        h.inventory.find_available_interfaces.assert_not_called()
        assert h.scheduler.next_delay == 300.0

    def test_unbound_pass_resyncs_registry_then_binds(self):
        h = Harness(available=[_available("10.0.1.5", "eni-5")])
        calls = MagicMock()
        calls.attach_mock(h.registry, "registry")
        calls.attach_mock(h.inventory.attach, "attach")

        h.binder.run_pass()

        names = [c[0] for c in calls.mock_calls]
        assert names == [
            "registry.clear_local_state",
            "registry.resync_from_peers",
            "registry.resume_serving_traffic",
            "attach",
        ]
        h.registry.resume_serving_traffic.assert_called_once_with(7)
        assert h.scheduler.next_delay == 60.0

    def test_no_candidates_logs_and_reschedules(self, caplog):
        h = Harness()
        h.resolver.resolve_candidates.side_effect = NoCandidatesError("us-east-1a")

        h.binder.run_pass()

        assert h.scheduler.next_delay == 60.0
        h.inventory.attach.assert_not_called()
        h.inventory.detach.assert_not_called()
        assert "Could not bind to IP" in caplog.text

    def test_registry_failure_still_reschedules(self):
        h = Harness()
        h.registry.resync_from_peers.side_effect = RuntimeError("peer down")
        h.binder.run_pass()
        assert h.scheduler.next_delay == 60.0
        h.inventory.attach.assert_not_called()

    def test_lost_binding_switches_to_unbound_interval(self):
        h = Harness(attached=[PRIMARY, _attached()])
        h.binder.run_pass()
        assert h.binder.state is BinderState.BOUND
        h.attached = [PRIMARY]
        h.scheduler.fire()
        assert h.binder.state is BinderState.UNBOUND
        assert h.scheduler.next_delay == 60.0

    def test_unbound_pass_describes_instance_once(self):
        h = Harness(available=[_available("10.0.1.4", "eni-4")])
        h.binder.run_pass()
        h.inventory.attach.assert_called_once_with("eni-4", "i-abc123", 1)
        assert h.inventory.describe_self.call_count == 1

    def test_state_transitions_logged(self, caplog):
        caplog.set_level(logging.INFO, logger="eni_binder")
        h = Harness(attached=[PRIMARY, _attached()])
        h.binder.run_pass()
        h.attached = [PRIMARY]
        h.scheduler.fire()
        states = [r.state for r in caplog.records if hasattr(r, "state")]
        assert states == ["bound", "unbound"]

    def test_pass_after_shutdown_does_nothing(self):
        h = Harness()
        h.binder.shutdown()
        h.resolver.reset_mock()
        h.binder.run_pass()
        h.resolver.resolve_candidates.assert_not_called()
        assert h.scheduler.pending == []


class TestShutdown:
    def test_cancels_timer_before_detach(self):
        h = Harness(attached=[PRIMARY, _attached("10.0.1.4", attachment_id="eni-attach-7")])
        h.binder.start()

        outcome = h.binder.shutdown()

        assert outcome.succeeded
        cancel_at = h.events.index(("cancel",))
        detach_at = h.events.index(("detach", "eni-attach-7"))
        assert cancel_at < detach_at
        assert h.binder.state is BinderState.SHUTTING_DOWN
        assert h.scheduler.pending == []

    def test_detach_failure_retried_then_given_up(self):
        h = Harness(attached=[PRIMARY, _attached()])
        h.inventory.detach.side_effect = DetachError("busy")

        outcome = h.binder.shutdown()

        assert not outcome.succeeded
        assert h.inventory.detach.call_count == 3
        assert h.sleep.call_count == 2

    def test_nothing_bound_is_success(self):
        h = Harness()
        assert h.binder.shutdown().succeeded
        h.inventory.detach.assert_not_called()

    def test_idempotent(self):
        h = Harness(attached=[PRIMARY, _attached()])
        h.binder.shutdown()
        h.binder.shutdown()
        assert h.events.count(("cancel",)) == 1


class TestShutdownDuringPass:
    """Shutdown racing a pass that is already running on the timer thread."""

    @staticmethod
    def _run_shutdown(h):
        h.binder.shutdown()
        h.events.append(("shutdown-returned",))

    def test_pass_found_unbound_does_not_attach_after_shutdown(self):
        h = Harness(available=[_available("10.0.1.4", "eni-4")])
        entered, release = threading.Event(), threading.Event()

        def slow_describe(iid):
            entered.set()
            release.wait(timeout=5)
            return InstanceDescription(iid, "subnet-1", list(h.attached))

        h.inventory.describe_self.side_effect = slow_describe
        h.inventory.attach.side_effect = lambda eni_id, iid, idx: h.events.append(("attach", eni_id))

        pass_thread = threading.Thread(target=h.binder.run_pass)
        pass_thread.start()
        assert entered.wait(timeout=5)

        shutdown_thread = threading.Thread(target=self._run_shutdown, args=(h,))
        shutdown_thread.start()
        shutdown_thread.join(timeout=0.2)
        assert shutdown_thread.is_alive()  # waiting on the running pass

        release.set()
        pass_thread.join(timeout=5)
        shutdown_thread.join(timeout=5)

        assert ("attach", "eni-4") not in h.events
        assert h.events[-1] == ("shutdown-returned",)
        assert h.scheduler.pending == []

    def test_attach_in_flight_is_detached_by_shutdown(self):
        h = Harness(available=[_available("10.0.1.4", "eni-4")])
        entered, release = threading.Event(), threading.Event()

        def slow_attach(eni_id, iid, idx):
            entered.set()
            release.wait(timeout=5)
            h.attached.append(_attached("10.0.1.4", eni_id="eni-4", attachment_id="eni-attach-4"))
            h.events.append(("attach", eni_id))
            return "eni-attach-4"

        h.inventory.attach.side_effect = slow_attach

        pass_thread = threading.Thread(target=h.binder.run_pass)
        pass_thread.start()
        assert entered.wait(timeout=5)

        shutdown_thread = threading.Thread(target=self._run_shutdown, args=(h,))
        shutdown_thread.start()
        shutdown_thread.join(timeout=0.2)
        release.set()
        pass_thread.join(timeout=5)
        shutdown_thread.join(timeout=5)

        assert h.events.index(("attach", "eni-4")) < h.events.index(("detach", "eni-attach-4"))
        assert h.events[-1] == ("shutdown-returned",)
