"""
Tests for the partition orchestrator.

============================================================
TEST COVERAGE
============================================================
1. Full runs: every pod partitioned and restored
2. Monitoring while the fault is active
3. Apply failures and restore failures, isolated per pod
4. Cancellation: before apply, while active, racing expiry
5. Dry run
6. Pre-flight warnings and failures
============================================================
"""

import asyncio
import logging

import pytest

from network_partition import (
    Direction,
    NoRunningPodsError,
    PartitionOrchestrator,
    PartitionSettings,
    PartitionSpec,
    PodState,
    ResolutionError,
    ExecutionError,
    summarize,
)
from network_partition.reporter import EXIT_OK, EXIT_UNRESTORED


POD_A = "order-payment-7d9f-abcde"
POD_B = "order-payment-7d9f-fghij"

APPLY = "iptables -A"
REMOVE = "iptables -D"


def make_spec(**overrides):
    values = dict(
        source_service="order-payment-service",
        target_service="postgres",
        duration_seconds=0.05,
    )
    values.update(overrides)
    return PartitionSpec.create(**values)


@pytest.fixture
def spec():
    return make_spec()


@pytest.fixture
def orchestrator(spec, resolver, executor, settings):
    return PartitionOrchestrator(spec, resolver, executor, settings=settings)


# ============================================================
# FULL RUNS
# ============================================================

class TestFullRun:
    """Test runs where every step succeeds."""

    @pytest.mark.asyncio
    async def test_payment_service_cut_off_from_postgres(self, orchestrator, executor, spec):
        """Two pods partitioned from postgres, both restored."""
        results = await orchestrator.run()

        assert [r.pod for r in results] == [POD_A, POD_B]
        for result in results:
            assert result.applied
            assert result.restored
            assert result.state is PodState.DONE
            assert result.connectivity_pre_ms == 12
            assert result.connectivity_post_ms == 12
            assert result.packets_dropped == 42
            assert result.target_address == "10.96.0.15"
            assert result.rules_remaining == ()

        assert len(executor.commands(APPLY)) == 2
        assert len(executor.commands(REMOVE)) == 2
        assert executor.commands(APPLY, POD_A) == [
            (POD_A, "iptables -A OUTPUT -d 10.96.0.15 -j DROP"),
        ]
        assert executor.commands(REMOVE, POD_A) == [
            (POD_A, "iptables -D OUTPUT -d 10.96.0.15 -j DROP"),
        ]

        text, code = summarize(results, spec)
        assert "Pods affected: 2" in text
        assert "Pods restored: 2" in text
        assert code == EXIT_OK

    @pytest.mark.asyncio
    async def test_state_history(self, orchestrator):
        results = await orchestrator.run()

        assert results[0].history == [
            PodState.PENDING,
            PodState.MEASURED_PRE,
            PodState.APPLIED,
            PodState.MONITORING,
            PodState.RESTORING,
            PodState.RESTORED,
            PodState.MEASURED_POST,
        ]

    @pytest.mark.asyncio
    async def test_removal_happens_after_apply_per_pod(self, orchestrator, executor):
        await orchestrator.run()

        for pod in (POD_A, POD_B):
            commands = [c for p, c in executor.calls if p == pod]
            applied_at = next(i for i, c in enumerate(commands) if c.startswith(APPLY))
            removed_at = next(i for i, c in enumerate(commands) if c.startswith(REMOVE))
            assert applied_at < removed_at

    @pytest.mark.asyncio
    async def test_monitoring_logs_progress(self, resolver, executor, caplog):
        """Test that drop counters are polled while the fault is active."""
        settings = PartitionSettings(
            monitor_interval_seconds=0.02,
            probe_timeout_seconds=0.01,
            settle_seconds=0,
            confirm_delay_seconds=0,
        )
        orchestrator = PartitionOrchestrator(
            make_spec(duration_seconds=0.2), resolver, executor, settings=settings,
        )

        with caplog.at_level(logging.INFO):
            await orchestrator.run()

        assert "Partition active" in caplog.text
        assert "packets dropped so far: 42" in caplog.text

    @pytest.mark.asyncio
    async def test_bounded_parallelism(self, resolver, executor):
        settings = PartitionSettings(
            monitor_interval_seconds=1.0,
            probe_timeout_seconds=0.5,
            settle_seconds=0,
            confirm_delay_seconds=0,
            max_parallel=2,
        )
        orchestrator = PartitionOrchestrator(make_spec(), resolver, executor, settings=settings)

        results = await orchestrator.run()

        assert all(r.applied and r.restored for r in results)
        assert [r.pod for r in results] == [POD_A, POD_B]

    @pytest.mark.asyncio
    async def test_orchestrator_is_reusable(self, orchestrator, executor):
        first = await orchestrator.run()
        second = await orchestrator.run()

        assert first is not second
        assert len(executor.commands(REMOVE)) == 4


# ============================================================
# MONITORING
# ============================================================

class TestMonitoring:
    """Test drop-counter polling while the fault is active."""

    @pytest.mark.asyncio
    async def test_hung_poll_does_not_stall_other_pods(self, resolver, executor):
        """A pod whose counter read never answers delays neither its peers nor the timer."""
        executor.hang_when = lambda pod, command: (
            pod == POD_A and command.startswith("iptables -n -v -x -L")
        )
        settings = PartitionSettings(
            monitor_interval_seconds=0.2,
            probe_timeout_seconds=0.15,
            settle_seconds=0,
            confirm_delay_seconds=0,
        )
        orchestrator = PartitionOrchestrator(
            make_spec(duration_seconds=0.7), resolver, executor, settings=settings,
        )
        loop = asyncio.get_running_loop()

        started = loop.time()
        results = await asyncio.wait_for(orchestrator.run(), timeout=5)
        elapsed = loop.time() - started

        assert len(executor.commands("iptables -n -v -x -L", POD_B)) >= 3
        assert elapsed < 0.7 + 1.0
        assert all(r.applied and r.restored for r in results)

        stalled, polled = results
        assert stalled.packets_dropped is None
        assert polled.packets_dropped == 42


# ============================================================
# APPLY FAILURES
# ============================================================

class TestApplyFailure:
    """Test pods whose rule could not be installed."""

    @pytest.mark.asyncio
    async def test_failed_apply_is_never_restored(self, orchestrator, executor, spec):
        executor.fail_when = lambda pod, command: pod == POD_A and command.startswith(APPLY)

        results = await orchestrator.run()
        failed, healthy = results

        assert not failed.applied
        assert not failed.restored
        assert failed.state is PodState.DONE
        assert failed.error
        assert executor.commands(REMOVE, POD_A) == []

        assert healthy.applied and healthy.restored
        assert len(executor.commands(REMOVE, POD_B)) == 1

        text, code = summarize(results, spec)
        assert "Pods affected: 1" in text
        assert f"{POD_A} - FAILED / N/A" in text
        assert code == EXIT_OK

    @pytest.mark.asyncio
    async def test_ingress_failure_keeps_egress(self, resolver, executor, settings):
        """Egress applied but ingress failed still counts as applied."""
        executor.fail_when = lambda pod, command: command.startswith("iptables -A INPUT")
        orchestrator = PartitionOrchestrator(
            make_spec(bidirectional=True), resolver, executor, settings=settings,
        )

        results = await orchestrator.run()

        for result in results:
            assert result.applied
            assert result.restored
            assert result.rules_applied == (Direction.EGRESS,)
        removes = executor.commands(REMOVE)
        assert len(removes) == 2
        assert all("OUTPUT" in command for _, command in removes)

    @pytest.mark.asyncio
    async def test_bidirectional_removes_both_rules(self, resolver, executor, settings):
        orchestrator = PartitionOrchestrator(
            make_spec(bidirectional=True), resolver, executor, settings=settings,
        )

        results = await orchestrator.run()

        assert results[0].rules_applied == (Direction.EGRESS, Direction.INGRESS)
        assert len(executor.commands(REMOVE, POD_A)) == 2


# ============================================================
# RESTORE FAILURES
# ============================================================

class TestRestoreFailure:
    """Test pods whose rule could not be removed."""

    @pytest.mark.asyncio
    async def test_one_pod_left_partitioned(self, orchestrator, executor, spec, caplog):
        executor.fail_when = lambda pod, command: pod == POD_B and command.startswith(REMOVE)

        with caplog.at_level(logging.ERROR):
            results = await orchestrator.run()

        healthy, stuck = results
        assert healthy.restored
        assert stuck.applied
        assert not stuck.restored
        assert stuck.needs_manual_cleanup
        assert stuck.rules_remaining == (Direction.EGRESS,)
        assert PodState.RESTORE_FAILED in stuck.history
        assert stuck.state is PodState.DONE
        assert "manual cleanup required" in caplog.text

        # no retry
        assert len(executor.commands(REMOVE, POD_B)) == 1

        text, code = summarize(results, spec)
        assert "Pods affected: 2" in text
        assert "Pods restored: 1" in text
        assert code == EXIT_UNRESTORED

        remediation = [line for line in text.splitlines() if line.strip().startswith("kubectl exec")]
        assert remediation == [
            f"  kubectl exec -n lomash-wood {POD_B} -- sh -c "
            f"'iptables -D OUTPUT -d 10.96.0.15 -j DROP'"
        ]

    @pytest.mark.asyncio
    async def test_restore_pod_is_idempotent(self, orchestrator, executor):
        results = await orchestrator.run()
        calls_before = len(executor.calls)

        for result in results:
            assert await orchestrator.restore_pod(result) is True

        assert len(executor.calls) == calls_before

    @pytest.mark.asyncio
    async def test_failed_restore_is_not_retried_on_second_call(self, orchestrator, executor):
        executor.fail_when = lambda pod, command: command.startswith(REMOVE)

        results = await orchestrator.run()
        for result in results:
            assert await orchestrator.restore_pod(result) is False

        assert len(executor.commands(REMOVE)) == 2


# ============================================================
# CANCELLATION
# ============================================================

class TestCancellation:
    """Test interrupts at every phase."""

    @pytest.mark.asyncio
    async def test_cancel_while_active_restores_every_pod_once(self, resolver, executor, settings):
        orchestrator = PartitionOrchestrator(
            make_spec(duration_seconds=30), resolver, executor, settings=settings,
        )
        cancel = asyncio.Event()
        asyncio.get_running_loop().call_later(0.05, cancel.set)

        results = await asyncio.wait_for(orchestrator.run(cancel), timeout=5)

        assert all(r.applied and r.restored for r in results)
        assert len(executor.commands(REMOVE)) == len(results) == 2

    @pytest.mark.asyncio
    async def test_cancel_racing_expiry(self, resolver, executor, settings):
        """Cancellation landing as the duration expires restores once."""
        orchestrator = PartitionOrchestrator(
            make_spec(duration_seconds=0.05), resolver, executor, settings=settings,
        )
        cancel = asyncio.Event()
        asyncio.get_running_loop().call_later(0.05, cancel.set)

        results = await orchestrator.run(cancel)

        assert len(executor.commands(REMOVE)) == 2
        assert all(r.restored for r in results)

    @pytest.mark.asyncio
    async def test_cancel_during_countdown_applies_nothing(self, resolver, executor):
        settings = PartitionSettings(
            monitor_interval_seconds=1.0,
            probe_timeout_seconds=0.5,
            settle_seconds=0,
            confirm_delay_seconds=5,
        )
        orchestrator = PartitionOrchestrator(make_spec(), resolver, executor, settings=settings)
        cancel = asyncio.Event()
        asyncio.get_running_loop().call_later(0.05, cancel.set)

        results = await asyncio.wait_for(orchestrator.run(cancel), timeout=5)

        assert results == []
        assert executor.commands(APPLY) == []

    @pytest.mark.asyncio
    async def test_unreached_pods_are_skipped(self, resolver, executor, settings):
        """Pods not reached before cancellation never get a rule."""
        cancel = asyncio.Event()

        def _fail_and_cancel(pod, command):
            if pod == POD_A and command.startswith(APPLY):
                cancel.set()
            return False

        executor.fail_when = _fail_and_cancel
        orchestrator = PartitionOrchestrator(
            make_spec(duration_seconds=30), resolver, executor, settings=settings,
        )

        results = await asyncio.wait_for(orchestrator.run(cancel), timeout=5)

        assert [r.pod for r in results] == [POD_A]
        assert results[0].restored
        assert executor.commands(APPLY, POD_B) == []

    @pytest.mark.asyncio
    async def test_task_cancellation_still_restores(self, resolver, executor, settings):
        orchestrator = PartitionOrchestrator(
            make_spec(duration_seconds=30), resolver, executor, settings=settings,
        )

        task = asyncio.ensure_future(orchestrator.run())
        await asyncio.sleep(0.05)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task

        assert len(executor.commands(APPLY)) == 2
        assert len(executor.commands(REMOVE)) == 2

    @pytest.mark.asyncio
    async def test_cancel_after_pre_measurement_is_skipped_not_failed(self, resolver, executor, settings, spec):
        cancel = asyncio.Event()

        def _cancel_on_probe(pod, command):
            if pod == POD_A and command.startswith("curl"):
                cancel.set()
            return False

        executor.fail_when = _cancel_on_probe
        orchestrator = PartitionOrchestrator(spec, resolver, executor, settings=settings)

        results = await asyncio.wait_for(orchestrator.run(cancel), timeout=5)

        assert [r.pod for r in results] == [POD_A]
        skipped = results[0]
        assert not skipped.applied
        assert skipped.error is None
        assert skipped.state is PodState.DONE
        assert executor.commands(APPLY) == []

        text, code = summarize(results, spec)
        assert f"{POD_A} - SKIPPED / N/A" in text
        assert "FAILED" not in text
        assert code == EXIT_OK


# ============================================================
# DRY RUN
# ============================================================

class TestDryRun:
    """Test dry-run mode."""

    @pytest.mark.asyncio
    async def test_no_real_executor_calls(self, resolver, executor, settings):
        orchestrator = PartitionOrchestrator(
            make_spec(dry_run=True, bidirectional=True), resolver, executor, settings=settings,
        )

        results = await orchestrator.run()

        assert executor.calls == []
        assert all(r.applied and r.restored for r in results)

        stub_commands = [c for _, c in orchestrator.executor.calls]
        assert sum(c.startswith(APPLY) for c in stub_commands) == 4
        assert sum(c.startswith(REMOVE) for c in stub_commands) == 4

    @pytest.mark.asyncio
    async def test_dry_run_skips_countdown(self, resolver, executor):
        settings = PartitionSettings(
            monitor_interval_seconds=1.0,
            probe_timeout_seconds=0.5,
            settle_seconds=0,
            confirm_delay_seconds=60,
        )
        orchestrator = PartitionOrchestrator(
            make_spec(dry_run=True), resolver, executor, settings=settings,
        )

        results = await asyncio.wait_for(orchestrator.run(), timeout=5)

        assert len(results) == 2

    @pytest.mark.asyncio
    async def test_latency_is_not_reported_as_unreachable(self, resolver, executor, settings, caplog):
        spec = make_spec(dry_run=True)
        orchestrator = PartitionOrchestrator(spec, resolver, executor, settings=settings)

        with caplog.at_level(logging.INFO):
            results = await orchestrator.run()

        text, _ = summarize(results, spec)
        assert "unreachable" not in caplog.text
        assert "unreachable" not in text
        assert "pre: n/a (dry run) / post: n/a (dry run)" in text


# ============================================================
# PRE-FLIGHT
# ============================================================

class TestPreflight:
    """Test checks and warnings before any mutation."""

    @pytest.mark.asyncio
    async def test_broad_warning_before_first_apply(self, resolver, executor, settings, caplog):
        orchestrator = PartitionOrchestrator(
            make_spec(target_service=None), resolver, executor, settings=settings,
        )

        with caplog.at_level(logging.INFO):
            await orchestrator.run()

        messages = [r.getMessage() for r in caplog.records]
        warning_at = next(i for i, m in enumerate(messages) if "No target specified" in m)
        first_apply_at = next(i for i, m in enumerate(messages) if APPLY in m)
        assert warning_at < first_apply_at
        assert caplog.records[warning_at].levelno == logging.WARNING

        assert executor.commands(APPLY, POD_A) == [(POD_A, "iptables -A OUTPUT -j DROP")]

    @pytest.mark.asyncio
    async def test_stateful_target_warning(self, orchestrator, caplog):
        with caplog.at_level(logging.WARNING):
            await orchestrator.run()

        assert "full network partition" in caplog.text
        assert "cascading failures" in caplog.text

    @pytest.mark.asyncio
    async def test_no_running_pods(self, make_resolver, executor, settings):
        orchestrator = PartitionOrchestrator(
            make_spec(), make_resolver(pods=[]), executor, settings=settings,
        )

        with pytest.raises(NoRunningPodsError):
            await orchestrator.run()

        assert executor.calls == []

    @pytest.mark.asyncio
    async def test_listing_failure(self, make_resolver, executor, settings):
        resolver = make_resolver(error=ExecutionError("Unable to connect to the server", returncode=1))
        orchestrator = PartitionOrchestrator(make_spec(), resolver, executor, settings=settings)

        with pytest.raises(ResolutionError):
            await orchestrator.run()

        assert executor.calls == []

    def test_invalid_settings_rejected(self, resolver, executor):
        from network_partition import ConfigurationError

        settings = PartitionSettings(monitor_interval_seconds=1.0, probe_timeout_seconds=2.0)
        with pytest.raises(ConfigurationError):
            PartitionOrchestrator(make_spec(), resolver, executor, settings=settings)
