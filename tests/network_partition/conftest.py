"""
Shared fixtures for network partition tests.

Mock adapters stand in for kubectl: MockExecutor answers the commands
the injector runs inside pods, MockPodLister answers pod listings.
"""

import asyncio
import logging
from typing import Callable, List, Optional, Tuple

import pytest

from network_partition import (
    ExecOutput,
    ExecutionError,
    PartitionSettings,
    PodLister,
    RemoteExecutor,
    TargetResolver,
)


RESOLVED_ADDRESS = "10.96.0.15"

DROP_COUNTERS = """\
Chain OUTPUT (policy ACCEPT 0 packets, 0 bytes)
    pkts      bytes target     prot opt in     out     source               destination
      42     2520 DROP       all  --  *      *       0.0.0.0/0            10.96.0.15
"""


# ============================================================
# MOCK ADAPTERS
# ============================================================

class MockExecutor(RemoteExecutor):
    """
    Records every call and answers with canned output.

    Set ``fail_when`` to a predicate of (pod, command) to make matching
    calls fail with a non-zero exit, and ``hang_when`` to make matching
    calls never answer.
    """

    def __init__(self, connect_time: str = "0.012"):
        self.calls: List[Tuple[str, str]] = []
        self.fail_when: Optional[Callable[[str, str], bool]] = None
        self.hang_when: Optional[Callable[[str, str], bool]] = None
        self.connect_time = connect_time
        self._logger = logging.getLogger("tests.mock_executor")

    async def execute(self, pod: str, command: str, timeout: float) -> ExecOutput:
        self.calls.append((pod, command))
        self._logger.info(f"exec {pod}: {command}")

        if self.hang_when and self.hang_when(pod, command):
            await asyncio.sleep(100)

        if self.fail_when and self.fail_when(pod, command):
            raise ExecutionError(
                message="command terminated with exit code 1",
                pod=pod,
                command=command,
                returncode=1,
            )

        if command.startswith("getent"):
            return ExecOutput(stdout=RESOLVED_ADDRESS)
        if command.startswith("curl"):
            return ExecOutput(stdout=self.connect_time)
        if command.startswith("iptables -n -v -x -L"):
            return ExecOutput(stdout=DROP_COUNTERS)
        return ExecOutput(stdout="")

    def commands(self, marker: str, pod: Optional[str] = None) -> List[Tuple[str, str]]:
        """Calls whose command contains ``marker``, optionally for one pod."""
        return [
            (p, c) for p, c in self.calls
            if marker in c and (pod is None or p == pod)
        ]


class MockPodLister(PodLister):
    """Returns a fixed pod list, or raises ``error``."""

    def __init__(self, pods: Optional[List[str]] = None, error: Optional[Exception] = None):
        self.pods = list(pods or [])
        self.error = error
        self.requests: List[Tuple[str, str]] = []

    async def list_pods(self, namespace: str, service_label: str) -> List[str]:
        self.requests.append((namespace, service_label))
        if self.error:
            raise self.error
        return list(self.pods)


# ============================================================
# FIXTURES
# ============================================================

@pytest.fixture
def executor():
    """Mock executor with default answers."""
    return MockExecutor()


@pytest.fixture
def pod_lister():
    """Two running pods of order-payment-service."""
    return MockPodLister(["order-payment-7d9f-abcde", "order-payment-7d9f-fghij"])


@pytest.fixture
def settings():
    """Fast settings: no countdown, no settle delay."""
    return PartitionSettings(
        monitor_interval_seconds=1.0,
        probe_timeout_seconds=0.5,
        exec_timeout_seconds=1.0,
        settle_seconds=0.0,
        confirm_delay_seconds=0.0,
    )


@pytest.fixture
def resolver(pod_lister, settings):
    """Resolver over the mock pod lister with the platform service map."""
    return TargetResolver(
        pod_lister,
        service_map=settings.service_map("lomash-wood"),
        default_probe_host=settings.default_probe_host,
        default_probe_port=settings.default_probe_port,
        lookup_timeout=settings.probe_timeout_seconds,
    )


@pytest.fixture
def make_resolver(settings):
    """Factory for resolvers over an arbitrary pod list or listing error."""
    def _make(pods=None, error=None):
        return TargetResolver(
            MockPodLister(pods, error),
            service_map=settings.service_map("lomash-wood"),
            lookup_timeout=settings.probe_timeout_seconds,
        )
    return _make
