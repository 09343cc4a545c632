"""
Network Partition - Target Resolver.

============================================================
RESPONSIBILITY
============================================================
Turns logical service names into pods and addresses.

- Lists running pods of the source service
- Maps service names to cluster DNS names
- Resolves the target inside each source pod, once per run

Zero running pods is a valid answer (an empty list); only a listing
call that cannot be made is a ResolutionError. The caller decides
whether zero pods is fatal.

============================================================
"""

import ipaddress
import logging
import shlex
from abc import ABC, abstractmethod
from typing import Dict, List, Optional

from .exceptions import ExecutionError, ResolutionError
from .executor import RemoteExecutor, run_process
from .models import PartitionSpec, PodTarget


logger = logging.getLogger(__name__)


# ============================================================
# POD LISTING
# ============================================================

class PodLister(ABC):
    """Lists pod names by namespace and `app` label."""

    @abstractmethod
    async def list_pods(self, namespace: str, service_label: str) -> List[str]:
        """
        Return running pod names.

        Raises:
            ExecutionError: If the listing call fails
        """
        pass


class KubectlPodLister(PodLister):
    """Lists pods with `kubectl get pods`."""

    def __init__(self, kubectl: str = "kubectl", timeout: float = 30.0):
        self.kubectl = kubectl
        self.timeout = timeout

    def build_argv(self, namespace: str, service_label: str) -> List[str]:
        return [
            self.kubectl, "get", "pods",
            "-n", namespace,
            "-l", f"app={service_label}",
            "--field-selector=status.phase=Running",
            "-o", "jsonpath={.items[*].metadata.name}",
        ]

    async def list_pods(self, namespace: str, service_label: str) -> List[str]:
        argv = self.build_argv(namespace, service_label)
        output = await run_process(argv, self.timeout, command=shlex.join(argv))
        return output.stdout.split()


# ============================================================
# TARGET RESOLVER
# ============================================================

def _is_ip(value: str) -> bool:
    try:
        ipaddress.ip_address(value)
    except ValueError:
        return False
    return True


class TargetResolver:
    """Resolves pods and target addresses for a partition run."""

    def __init__(
        self,
        pod_lister: PodLister,
        service_map: Optional[Dict[str, str]] = None,
        default_probe_host: str = "api-gateway",
        default_probe_port: int = 3000,
        lookup_timeout: float = 5.0,
    ):
        self._pod_lister = pod_lister
        self._service_map = dict(service_map or {})
        self._default_probe_host = default_probe_host
        self._default_probe_port = default_probe_port
        self._lookup_timeout = lookup_timeout

    async def list_running_pods(self, namespace: str, service_label: str) -> List[str]:
        """
        Running pods of a service.

        Returns an empty list when the service has no running pods.

        Raises:
            ResolutionError: If the listing call itself fails
        """
        try:
            pods = await self._pod_lister.list_pods(namespace, service_label)
        except ExecutionError as e:
            raise ResolutionError(
                message=f"Could not list pods for {service_label}: {e.message}",
                namespace=namespace,
                service=service_label,
                cause=e,
            ) from e

        return [p for p in pods if p]

    def resolve_address(self, service_name: str) -> str:
        """Cluster DNS name of a service, or the name itself if unmapped."""
        return self._service_map.get(service_name, service_name)

    async def resolve_in_pod(
        self,
        executor: RemoteExecutor,
        pod: str,
        hostname: str,
    ) -> Optional[str]:
        """IP address of ``hostname`` as seen from inside ``pod``, or None."""
        command = f"getent hosts {shlex.quote(hostname)} | awk '{{print $1}}' | head -1"
        try:
            output = await executor.execute(pod, command, self._lookup_timeout)
        except ExecutionError as e:
            logger.debug(f"Name lookup of {hostname} in {pod} failed: {e.message}")
            return None

        candidate = output.stdout.split()[0] if output.stdout.split() else ""
        return candidate if _is_ip(candidate) else None

    async def resolve_target(
        self,
        executor: RemoteExecutor,
        spec: PartitionSpec,
        pod: str,
    ) -> PodTarget:
        """Resolve the filter address and probe endpoint for one pod."""
        probe_port = spec.target_port or self._default_probe_port

        if spec.is_broad:
            return PodTarget(
                pod=pod,
                address=None,
                probe_host=self.resolve_address(self._default_probe_host),
                probe_port=probe_port,
            )

        if spec.target_service:
            hostname = self.resolve_address(spec.target_service)
        else:
            hostname = spec.target_host

        if _is_ip(hostname):
            address = hostname
        else:
            address = await self.resolve_in_pod(executor, pod, hostname)
            if address is None:
                if not spec.dry_run:
                    logger.warning(
                        f"Could not resolve {hostname} from pod {pod} - "
                        f"filtering on the hostname itself"
                    )
                address = hostname

        return PodTarget(pod=pod, address=address, probe_host=hostname, probe_port=probe_port)

    async def resolve_targets(
        self,
        executor: RemoteExecutor,
        spec: PartitionSpec,
        pods: List[str],
    ) -> List[PodTarget]:
        """Resolve every pod once, in order."""
        targets = []
        for pod in pods:
            targets.append(await self.resolve_target(executor, spec, pod))
        return targets


__all__ = [
    "PodLister",
    "KubectlPodLister",
    "TargetResolver",
]
