"""
Network Partition - Remote Executor.

============================================================
PURPOSE
============================================================
Runs a single command inside a named pod with a bounded timeout.

The transport is an external capability; this module only adapts it:

1. RemoteExecutor - abstract contract used by the orchestrator
2. KubectlExecutor - `kubectl exec` through asyncio subprocesses
3. DryRunExecutor - fixed successful stub, never spawns a process

============================================================
CONTRACT
============================================================
execute(pod, command, timeout) -> ExecOutput
Raises ExecutionError on non-zero exit, timeout or launch failure.
The child process is killed on timeout and on task cancellation.

============================================================
"""

import asyncio
import logging
import shlex
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from .exceptions import ExecutionError


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ExecOutput:
    """Captured output of a remote command."""
    stdout: str
    stderr: str = ""
    returncode: int = 0


# ============================================================
# PROCESS HELPER
# ============================================================

def _kill(process: asyncio.subprocess.Process) -> None:
    try:
        process.kill()
    except ProcessLookupError:
        pass


async def run_process(
    argv: Sequence[str],
    timeout: float,
    pod: Optional[str] = None,
    command: Optional[str] = None,
) -> ExecOutput:
    """
    Run a local process and capture its output.

    Args:
        argv: Program and arguments
        timeout: Seconds before the process is killed
        pod: Pod name, for error context
        command: Remote command, for error context

    Returns:
        ExecOutput with stripped stdout/stderr

    Raises:
        ExecutionError: Launch failure, timeout or non-zero exit
    """
    try:
        process = await asyncio.create_subprocess_exec(
            *argv,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as e:
        raise ExecutionError(
            message=f"Could not start {argv[0]}: {e}",
            pod=pod,
            command=command,
            cause=e,
        ) from e

    try:
        stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
    except asyncio.TimeoutError as e:
        _kill(process)
        await process.wait()
        raise ExecutionError(
            message=f"Command timed out after {timeout}s",
            pod=pod,
            command=command,
            cause=e,
        ) from e
    except asyncio.CancelledError:
        _kill(process)
        await asyncio.shield(process.wait())
        raise

    output = ExecOutput(
        stdout=stdout.decode("utf-8", errors="replace").strip(),
        stderr=stderr.decode("utf-8", errors="replace").strip(),
        returncode=process.returncode,
    )

    if process.returncode != 0:
        raise ExecutionError(
            message=f"Command exited with status {process.returncode}: {output.stderr or output.stdout}",
            pod=pod,
            command=command,
            returncode=process.returncode,
            stderr=output.stderr,
        )

    return output


# ============================================================
# EXECUTORS
# ============================================================

class RemoteExecutor(ABC):
    """Executes one command against one pod."""

    @abstractmethod
    async def execute(self, pod: str, command: str, timeout: float) -> ExecOutput:
        """
        Run ``command`` inside ``pod``.

        Raises:
            ExecutionError: If the command could not be run or failed
        """
        pass

    def describe(self, pod: str, command: str) -> str:
        """Human-readable form of a call, for logs."""
        return f"{pod}: {command}"


class KubectlExecutor(RemoteExecutor):
    """Runs commands through `kubectl exec ... -- sh -c <command>`."""

    def __init__(self, namespace: str, kubectl: str = "kubectl"):
        self.namespace = namespace
        self.kubectl = kubectl

    def build_argv(self, pod: str, command: str) -> List[str]:
        return [
            self.kubectl, "exec", "-n", self.namespace, pod, "--",
            "sh", "-c", command,
        ]

    def describe(self, pod: str, command: str) -> str:
        return shlex.join(self.build_argv(pod, command))

    async def execute(self, pod: str, command: str, timeout: float) -> ExecOutput:
        argv = self.build_argv(pod, command)
        logger.debug(f"exec {shlex.join(argv)}")
        return await run_process(argv, timeout, pod=pod, command=command)


class DryRunExecutor(KubectlExecutor):
    """
    Fixed successful stub.

    Logs the kubectl call it would have made and records it; every call
    succeeds with empty output.
    """

    def __init__(self, namespace: str, kubectl: str = "kubectl"):
        super().__init__(namespace, kubectl)
        self.calls: List[Tuple[str, str]] = []

    async def execute(self, pod: str, command: str, timeout: float) -> ExecOutput:
        self.calls.append((pod, command))
        logger.info(f"[DRY RUN] {self.describe(pod, command)}")
        return ExecOutput(stdout="")


__all__ = [
    "ExecOutput",
    "run_process",
    "RemoteExecutor",
    "KubectlExecutor",
    "DryRunExecutor",
]
