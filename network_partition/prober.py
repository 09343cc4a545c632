"""
Network Partition - Connectivity Prober.

============================================================
PURPOSE
============================================================
Measures what a partition does, from inside the source pod.

- probe(): TCP connect latency to host:port via curl, in ms
- packets_dropped(): packet counters of DROP rules via iptables

Unreachability is a valid measurement, not an error: every failure
(timeout, refused connection, DNS failure, unparsable output)
collapses to None. Nothing in this module raises to the caller.

============================================================
"""

import asyncio
import logging
import shlex
from typing import Iterable, Optional

from .exceptions import ExecutionError
from .executor import RemoteExecutor
from .models import Direction


logger = logging.getLogger(__name__)


def parse_connect_time(raw: str) -> Optional[int]:
    """curl ``%{time_connect}`` seconds to whole milliseconds."""
    try:
        seconds = float(raw.strip())
    except ValueError:
        return None
    # curl reports 0 when no connection was made
    if seconds <= 0:
        return None
    return round(seconds * 1000)


def parse_drop_counters(raw: str) -> Optional[int]:
    """
    Sum packet counters of DROP rules in `iptables -n -v -x -L` output.

    Returns None when no rule row could be parsed at all.
    """
    total = 0
    seen = False
    for line in raw.splitlines():
        fields = line.split()
        if len(fields) < 3 or fields[2] != "DROP":
            continue
        try:
            total += int(fields[0])
        except ValueError:
            continue
        seen = True
    return total if seen else None


class ConnectivityProber:
    """Probes reachability and drop counters through a RemoteExecutor."""

    def __init__(self, executor: RemoteExecutor):
        self._executor = executor

    async def _run(self, pod: str, command: str, timeout: float) -> Optional[str]:
        try:
            output = await asyncio.wait_for(
                self._executor.execute(pod, command, timeout),
                timeout=timeout,
            )
        except ExecutionError as e:
            logger.debug(f"Probe command failed in {pod}: {e.message}")
            return None
        except asyncio.TimeoutError:
            logger.debug(f"Probe command timed out in {pod} after {timeout}s")
            return None
        return output.stdout

    async def probe(self, pod: str, host: str, port: int, timeout: float) -> Optional[int]:
        """
        Connect latency from ``pod`` to ``host:port``.

        Returns:
            Latency in milliseconds, or None if unreachable
        """
        seconds = f"{timeout:g}"
        command = (
            "curl -s -o /dev/null -w '%{time_connect}' "
            f"--connect-timeout {seconds} --max-time {seconds} "
            f"{shlex.quote(f'http://{host}:{port}/health')}"
        )
        raw = await self._run(pod, command, timeout)
        if raw is None:
            return None
        return parse_connect_time(raw)

    async def packets_dropped(
        self,
        pod: str,
        directions: Iterable[Direction],
        timeout: float,
    ) -> Optional[int]:
        """
        Packets dropped so far by DROP rules in the given directions.

        Returns:
            Packet count, or None if the counters could not be read
        """
        chains = [d.chain for d in directions]
        if not chains:
            return None
        command = " && ".join(f"iptables -n -v -x -L {chain}" for chain in chains)
        raw = await self._run(pod, command, timeout)
        if raw is None:
            return None
        return parse_drop_counters(raw)


__all__ = [
    "ConnectivityProber",
    "parse_connect_time",
    "parse_drop_counters",
]
