"""
Network Partition Orchestrator.

============================================================
PURPOSE
============================================================
Drives a partition run across every pod of the source service.

Per-pod state machine:

    PENDING -> MEASURED_PRE -> APPLIED -> MONITORING -> RESTORING
            -> {RESTORED | RESTORE_FAILED} -> MEASURED_POST -> DONE

A pod whose apply fails goes from MEASURED_PRE straight to DONE with
applied=False, restored=False: there is nothing to restore.

============================================================
SAFETY GUARANTEES
============================================================

1. Every pod with applied=True gets exactly one restoration attempt,
   whether the run ends by duration expiry or by cancellation.
2. Restoration is idempotent; a second call for the same pod is a
   no-op. A failed restoration is never retried automatically.
3. One pod's failure (apply, probe, restore) never affects another.
4. Pods not yet reached when cancellation arrives never get a rule.
5. In dry-run mode the executor is replaced by DryRunExecutor, so no
   remote command is ever run.

Cancellation is an asyncio.Event passed into run(). Setting it cuts
short every remaining wait and moves straight to restoration.

KNOWN LIMITATION: nothing about applied rules is persisted. If the
process dies mid-run the rules stay on the pods until removed by hand.

============================================================
"""

import asyncio
import logging
from typing import Dict, List, Optional

from .config import PartitionSettings
from .exceptions import (
    ExecutionError,
    NoRunningPodsError,
    RestorationError,
    SpecValidationError,
    StateTransitionError,
)
from .executor import DryRunExecutor, RemoteExecutor
from .logs import log_success
from .models import (
    DRY_RUN_LATENCY,
    STATEFUL_TARGETS,
    VALID_TRANSITIONS,
    Direction,
    PartitionResult,
    PartitionSpec,
    PodState,
    PodTarget,
)
from .prober import ConnectivityProber
from .resolver import TargetResolver
from .rules import (
    compile_apply,
    compile_directions,
    compile_remove,
    remediation_commands,
    render_command,
)


logger = logging.getLogger(__name__)


def _format_ms(value: Optional[int], missing: str = "unreachable", dry_run: bool = False) -> str:
    if value is not None:
        return f"{value}ms"
    return DRY_RUN_LATENCY if dry_run else missing


class PartitionOrchestrator:
    """
    Runs one network partition end to end.

    The orchestrator keeps no per-run state on the instance: results are
    created, owned and returned by a single run() call.
    """

    def __init__(
        self,
        spec: PartitionSpec,
        resolver: TargetResolver,
        executor: RemoteExecutor,
        prober: Optional[ConnectivityProber] = None,
        settings: Optional[PartitionSettings] = None,
    ):
        """
        Initialize the orchestrator.

        Args:
            spec: Validated partition request
            resolver: Pod and address resolution
            executor: Remote command transport (ignored in dry-run mode)
            prober: Connectivity prober (default: one bound to the executor)
            settings: Run settings (default: PartitionSettings())
        """
        errors = spec.validate()
        if errors:
            raise SpecValidationError(errors)

        self._spec = spec
        self._settings = (settings or PartitionSettings()).ensure_valid()
        self._resolver = resolver

        if spec.dry_run:
            executor = DryRunExecutor(spec.namespace, self._settings.kubectl)
            prober = None

        self._executor = executor
        self._prober = prober or ConnectivityProber(executor)

    @property
    def spec(self) -> PartitionSpec:
        return self._spec

    @property
    def executor(self) -> RemoteExecutor:
        """The executor actually used (the dry-run stub in dry-run mode)."""
        return self._executor

    # ========================================================
    # RUN
    # ========================================================

    async def run(self, cancel: Optional[asyncio.Event] = None) -> List[PartitionResult]:
        """
        Execute the partition.

        Args:
            cancel: Event that, once set, ends the partition early

        Returns:
            One PartitionResult per pod that entered the state machine,
            in pod listing order

        Raises:
            ResolutionError: Pod listing failed or found no running pods
        """
        cancel = cancel or asyncio.Event()
        spec = self._spec

        self._log_plan()
        self._warn_blast_radius()

        pods = await self._resolver.list_running_pods(spec.namespace, spec.source_service)
        if not pods:
            logger.error(f"No running pods found for source service: {spec.source_service}")
            raise NoRunningPodsError(spec.namespace, spec.source_service)

        logger.info(f"Found {len(pods)} source pod(s): {', '.join(pods)}")

        targets = await self._resolver.resolve_targets(self._executor, spec, pods)
        targets_by_pod = {t.pod: t for t in targets}

        if not spec.dry_run and self._settings.confirm_delay_seconds > 0:
            logger.warning("LIVE MODE - network rules will be applied")
            logger.warning(f"Waiting {self._settings.confirm_delay_seconds:g}s. Ctrl+C to abort.")
            if await self._wait(cancel, self._settings.confirm_delay_seconds):
                logger.warning("Cancelled before any rule was applied")
                return []

        records: Dict[int, PartitionResult] = {}
        try:
            await self._apply_all(targets, records, cancel)
            results = [records[i] for i in sorted(records)]
            if any(r.applied for r in results):
                await self._hold(results, targets_by_pod, cancel)
        finally:
            results = [records[i] for i in sorted(records)]
            await self._finish_restoration(results, targets_by_pod)

        return results

    # ========================================================
    # PRE-FLIGHT LOGGING
    # ========================================================

    def _log_plan(self) -> None:
        spec = self._spec
        logger.info("Chaos - Network Partition")
        logger.info(f"Namespace:       {spec.namespace}")
        logger.info(f"Source service:  {spec.source_service}")
        logger.info(f"Target:          {spec.target_label}")
        logger.info(f"Target port:     {spec.target_port or 'all'}")
        logger.info(f"Drop percent:    {spec.drop_percent}%")
        logger.info(f"Duration:        {spec.duration_seconds:g}s")
        logger.info(f"Bidirectional:   {spec.bidirectional}")
        logger.info(f"Dry run:         {spec.dry_run}")

    def _warn_blast_radius(self) -> None:
        spec = self._spec
        if spec.is_broad:
            scope = "all egress and ingress" if spec.bidirectional else "all egress"
            logger.warning(
                f"No target specified - partition will affect {scope} traffic "
                f"from every {spec.source_service} pod"
            )
        if spec.is_full_block:
            logger.warning("100% packet drop - full network partition")
            if spec.target_service in STATEFUL_TARGETS:
                logger.warning(
                    f"Cutting off {spec.target_service} may cause cascading failures and data loss"
                )

    # ========================================================
    # STATE MACHINE
    # ========================================================

    def _transition(self, result: PartitionResult, state: PodState) -> None:
        if state not in VALID_TRANSITIONS[result.state]:
            raise StateTransitionError(
                message=f"Invalid state transition: {result.state.value} -> {state.value}",
                pod=result.pod,
                from_state=result.state.value,
                to_state=state.value,
            )
        logger.debug(f"Pod {result.pod}: {result.state.value} -> {state.value}")
        result.history.append(result.state)
        result.state = state

    async def _wait(self, cancel: asyncio.Event, seconds: float) -> bool:
        """Wait up to ``seconds``; True if cancelled first."""
        if cancel.is_set():
            return True
        if seconds <= 0:
            return False
        try:
            await asyncio.wait_for(cancel.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return cancel.is_set()
        return True

    # ========================================================
    # APPLY
    # ========================================================

    async def _apply_all(
        self,
        targets: List[PodTarget],
        records: Dict[int, PartitionResult],
        cancel: asyncio.Event,
    ) -> None:
        semaphore = asyncio.Semaphore(self._settings.max_parallel)

        async def _one(index: int, target: PodTarget) -> None:
            async with semaphore:
                if cancel.is_set():
                    logger.warning(f"Skipping pod {target.pod} - cancelled before it was reached")
                    return
                result = PartitionResult(
                    pod=target.pod,
                    direction=self._spec.scope,
                    target_address=target.address,
                )
                records[index] = result
                await self._prepare_pod(result, target, cancel)

        outcomes = await asyncio.gather(
            *(_one(i, t) for i, t in enumerate(targets)),
            return_exceptions=True,
        )
        for outcome in outcomes:
            if isinstance(outcome, BaseException):
                raise outcome

    async def _prepare_pod(
        self,
        result: PartitionResult,
        target: PodTarget,
        cancel: asyncio.Event,
    ) -> None:
        result.connectivity_pre_ms = await self._prober.probe(
            target.pod,
            target.probe_host,
            target.probe_port,
            self._settings.probe_timeout_seconds,
        )
        self._transition(result, PodState.MEASURED_PRE)
        logger.info(
            f"Pod {target.pod} pre-partition connectivity: "
            f"{_format_ms(result.connectivity_pre_ms, dry_run=self._spec.dry_run)}"
        )

        if cancel.is_set():
            logger.warning(f"Cancellation received - not partitioning pod {target.pod}")
            self._transition(result, PodState.DONE)
            return

        await self._apply_pod(result, target)

    async def _apply_pod(self, result: PartitionResult, target: PodTarget) -> None:
        spec = self._spec
        pod = target.pod
        peer = target.address or "all traffic"
        if target.address and spec.target_port:
            peer = f"{target.address}:{spec.target_port}"
        logger.info(f"Partitioning pod {pod} - dropping {spec.drop_percent}% of packets to {peer}")

        installed: List[Direction] = []
        for direction in compile_directions(spec):
            rule = compile_apply(spec, target.address, direction)
            try:
                await self._executor.execute(
                    pod, render_command(rule), self._settings.exec_timeout_seconds,
                )
            except ExecutionError as e:
                result.error = e.message
                if e.returncode is None:
                    # timed out or never started; the rule may or may not be in place
                    for line in remediation_commands(
                        spec, pod, target.address, [direction], self._settings.kubectl,
                    ):
                        logger.warning(f"Outcome unknown for pod {pod}; if the rule exists remove it with: {line}")
                if direction is Direction.EGRESS:
                    logger.error(f"Failed to apply egress partition to pod {pod}: {e.message}")
                    break
                logger.warning(f"Egress partition applied but ingress failed for pod {pod}: {e.message}")
                continue
            installed.append(direction)

        result.rules_applied = tuple(installed)
        result.rules_remaining = tuple(installed)

        if not installed:
            self._transition(result, PodState.DONE)
            return

        result.applied = True
        self._transition(result, PodState.APPLIED)
        log_success(logger, f"Network partition applied to pod {pod}")

    # ========================================================
    # MONITOR
    # ========================================================

    async def _hold(
        self,
        results: List[PartitionResult],
        targets_by_pod: Dict[str, PodTarget],
        cancel: asyncio.Event,
    ) -> None:
        """Keep the partition in place until expiry or cancellation."""
        applied = [r for r in results if r.applied]
        for result in applied:
            self._transition(result, PodState.MONITORING)

        duration = self._spec.duration_seconds
        logger.info(f"Holding partition on {len(applied)} pod(s) for {duration:g}s")

        monitor = asyncio.ensure_future(self._monitor(applied, duration))
        try:
            interrupted = await self._wait(cancel, duration)
        finally:
            monitor.cancel()
            await asyncio.gather(monitor, return_exceptions=True)

        if interrupted:
            logger.warning("Cancellation received - removing network partition")
        else:
            logger.info("Duration elapsed - removing network partition")

    async def _monitor(self, applied: List[PartitionResult], duration: float) -> None:
        """Poll drop counters on a fixed schedule until cancelled."""
        loop = asyncio.get_running_loop()
        interval = self._settings.monitor_interval_seconds
        deadline = loop.time() + duration
        next_tick = loop.time()

        while True:
            next_tick += interval
            await asyncio.sleep(max(0.0, next_tick - loop.time()))

            remaining = max(0.0, deadline - loop.time())
            logger.info(f"Partition active - {remaining:.0f}s remaining")

            active = [r for r in applied if not r.restore_attempted]
            await asyncio.gather(*(self._poll_drops(r) for r in active))

    async def _poll_drops(self, result: PartitionResult) -> None:
        dropped = await self._prober.packets_dropped(
            result.pod, result.rules_applied, self._settings.probe_timeout_seconds,
        )
        if dropped is not None:
            result.packets_dropped = dropped
            logger.info(f"Pod {result.pod} - packets dropped so far: {dropped}")

    # ========================================================
    # RESTORE
    # ========================================================

    def remediation_for(self, result: PartitionResult) -> List[str]:
        """Commands that remove the rules still left on a pod."""
        return remediation_commands(
            self._spec,
            result.pod,
            result.target_address,
            result.rules_remaining,
            self._settings.kubectl,
        )

    async def restore_pod(self, result: PartitionResult) -> bool:
        """
        Remove the partition from one pod.

        Idempotent: only the first call for an applied pod does any
        work; later calls return the recorded outcome.

        Returns:
            True if every installed rule was removed
        """
        if not result.applied or result.restore_attempted:
            return result.restored

        self._transition(result, PodState.RESTORING)

        dropped = await self._prober.packets_dropped(
            result.pod, result.rules_remaining, self._settings.probe_timeout_seconds,
        )
        if dropped is not None:
            result.packets_dropped = dropped

        logger.info(f"Removing network partition from pod {result.pod}")

        remaining: List[Direction] = []
        for direction in result.rules_remaining:
            rule = compile_remove(self._spec, result.target_address, direction)
            try:
                await self._executor.execute(
                    result.pod, render_command(rule), self._settings.exec_timeout_seconds,
                )
            except ExecutionError as e:
                result.error = e.message
                logger.error(
                    f"Failed to remove {direction.value} rule from pod {result.pod}: {e.message}"
                )
                remaining.append(direction)
        result.rules_remaining = tuple(remaining)

        if remaining:
            result.restored = False
            self._transition(result, PodState.RESTORE_FAILED)
            error = RestorationError(result.pod, self.remediation_for(result))
            logger.error(f"{error.message} - manual cleanup required:")
            for line in error.remediation:
                logger.error(f"  {line}")
            return False

        result.restored = True
        self._transition(result, PodState.RESTORED)
        log_success(logger, f"Network partition removed from pod {result.pod}")
        return True

    async def _restore_and_measure(self, result: PartitionResult, target: PodTarget) -> None:
        if result.restore_attempted:
            return

        await self.restore_pod(result)

        if self._settings.settle_seconds > 0:
            await asyncio.sleep(self._settings.settle_seconds)

        result.connectivity_post_ms = await self._prober.probe(
            target.pod,
            target.probe_host,
            target.probe_port,
            self._settings.probe_timeout_seconds,
        )
        self._transition(result, PodState.MEASURED_POST)
        logger.info(
            f"Pod {result.pod} post-partition connectivity: "
            f"{_format_ms(result.connectivity_post_ms, 'still unreachable', self._spec.dry_run)}"
        )
        self._transition(result, PodState.DONE)

    async def _restore_all(
        self,
        results: List[PartitionResult],
        targets_by_pod: Dict[str, PodTarget],
    ) -> None:
        semaphore = asyncio.Semaphore(self._settings.max_parallel)

        async def _one(result: PartitionResult) -> None:
            async with semaphore:
                await self._restore_and_measure(result, targets_by_pod[result.pod])

        pending = [r for r in results if r.applied and not r.restore_attempted]
        outcomes = await asyncio.gather(*(_one(r) for r in pending), return_exceptions=True)
        for result, outcome in zip(pending, outcomes):
            if isinstance(outcome, BaseException):
                result.error = str(outcome)
                logger.error(
                    f"Unexpected error while restoring pod {result.pod}: {outcome}",
                    exc_info=outcome,
                )

    async def _finish_restoration(
        self,
        results: List[PartitionResult],
        targets_by_pod: Dict[str, PodTarget],
    ) -> None:
        """Run restoration to completion even if the calling task is cancelled."""
        task = asyncio.ensure_future(self._restore_all(results, targets_by_pod))
        cancelled = False
        while not task.done():
            try:
                await asyncio.shield(task)
            except asyncio.CancelledError:
                if task.done():
                    break
                cancelled = True
                logger.warning("Task cancelled during restoration - finishing restoration first")
        if cancelled:
            raise asyncio.CancelledError()
        task.result()


__all__ = [
    "PartitionOrchestrator",
]
