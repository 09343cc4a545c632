"""
Network Partition - Configuration.

============================================================
CONFIGURABLE RUN SETTINGS
============================================================

Operational knobs that are not part of a single partition request:
- Monitoring interval and timeouts
- Safety countdown and settle delay
- Bounded parallelism
- Service name to cluster DNS mapping

Configuration can be loaded from:
- Default values
- Environment variables (PARTITION_*, .env supported)
- YAML config file

============================================================
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

import yaml
from dotenv import load_dotenv

from .exceptions import ConfigurationError
from .models import DEFAULT_NAMESPACE


logger = logging.getLogger(__name__)


PLATFORM_SERVICES = (
    "api-gateway",
    "auth-service",
    "product-service",
    "order-payment-service",
    "appointment-service",
    "content-service",
    "customer-service",
    "notification-service",
    "analytics-service",
    "postgres",
    "redis",
)


def default_service_map(
    namespace: str = DEFAULT_NAMESPACE,
    cluster_domain: str = "cluster.local",
) -> Dict[str, str]:
    """Cluster DNS names for the platform services."""
    return {
        name: f"{name}.{namespace}.svc.{cluster_domain}"
        for name in PLATFORM_SERVICES
    }


# =============================================================
# SETTINGS
# =============================================================


@dataclass
class PartitionSettings:
    """Settings for a partition run."""

    monitor_interval_seconds: float = 10.0
    """Interval between drop-counter polls while a fault is active."""

    probe_timeout_seconds: float = 5.0
    """Timeout for one connectivity probe or counter read."""

    exec_timeout_seconds: float = 30.0
    """Timeout for apply/remove commands."""

    settle_seconds: float = 2.0
    """Delay between restoring a pod and measuring it again."""

    confirm_delay_seconds: float = 5.0
    """Abortable countdown before the first live apply."""

    max_parallel: int = 1
    """Pods processed concurrently (1 = sequential)."""

    default_probe_host: str = "api-gateway"
    """Probe target when the partition has no target."""

    default_probe_port: int = 3000
    """Probe port when the partition has no target port."""

    cluster_domain: str = "cluster.local"

    kubectl: str = "kubectl"
    """kubectl binary used for listing and exec."""

    services: Dict[str, str] = field(default_factory=dict)
    """Overrides for the service name to DNS name mapping."""

    def service_map(self, namespace: str = DEFAULT_NAMESPACE) -> Dict[str, str]:
        mapping = default_service_map(namespace, self.cluster_domain)
        mapping.update(self.services)
        return mapping

    def validate(self) -> List[str]:
        """Validate settings, return list of errors."""
        errors = []

        if self.monitor_interval_seconds <= 0:
            errors.append("monitor_interval_seconds must be positive")

        if self.probe_timeout_seconds <= 0:
            errors.append("probe_timeout_seconds must be positive")

        if self.probe_timeout_seconds >= self.monitor_interval_seconds:
            errors.append(
                "probe_timeout_seconds must be shorter than monitor_interval_seconds"
            )

        if self.exec_timeout_seconds <= 0:
            errors.append("exec_timeout_seconds must be positive")

        if self.settle_seconds < 0:
            errors.append("settle_seconds must not be negative")

        if self.confirm_delay_seconds < 0:
            errors.append("confirm_delay_seconds must not be negative")

        if self.max_parallel < 1:
            errors.append("max_parallel must be at least 1")

        if not 1 <= self.default_probe_port <= 65535:
            errors.append("default_probe_port must be in [1, 65535]")

        return errors

    def ensure_valid(self) -> "PartitionSettings":
        errors = self.validate()
        if errors:
            raise ConfigurationError(
                message=f"Invalid settings: {', '.join(errors)}",
                context={"errors": errors},
            )
        return self

    @classmethod
    def from_env(cls, dotenv: bool = True) -> "PartitionSettings":
        """Load settings from environment variables."""
        if dotenv:
            load_dotenv()

        config = cls()

        if os.getenv("PARTITION_MONITOR_INTERVAL"):
            config.monitor_interval_seconds = float(os.getenv("PARTITION_MONITOR_INTERVAL"))
        if os.getenv("PARTITION_PROBE_TIMEOUT"):
            config.probe_timeout_seconds = float(os.getenv("PARTITION_PROBE_TIMEOUT"))
        if os.getenv("PARTITION_EXEC_TIMEOUT"):
            config.exec_timeout_seconds = float(os.getenv("PARTITION_EXEC_TIMEOUT"))
        if os.getenv("PARTITION_SETTLE_SECONDS"):
            config.settle_seconds = float(os.getenv("PARTITION_SETTLE_SECONDS"))
        if os.getenv("PARTITION_CONFIRM_DELAY"):
            config.confirm_delay_seconds = float(os.getenv("PARTITION_CONFIRM_DELAY"))
        if os.getenv("PARTITION_MAX_PARALLEL"):
            config.max_parallel = int(os.getenv("PARTITION_MAX_PARALLEL"))
        if os.getenv("PARTITION_PROBE_HOST"):
            config.default_probe_host = os.getenv("PARTITION_PROBE_HOST")
        if os.getenv("PARTITION_PROBE_PORT"):
            config.default_probe_port = int(os.getenv("PARTITION_PROBE_PORT"))
        if os.getenv("PARTITION_CLUSTER_DOMAIN"):
            config.cluster_domain = os.getenv("PARTITION_CLUSTER_DOMAIN")
        if os.getenv("KUBECTL"):
            config.kubectl = os.getenv("KUBECTL")

        return config

    @classmethod
    def from_yaml(cls, path: Path, base: Optional["PartitionSettings"] = None) -> "PartitionSettings":
        """
        Load settings from a YAML file, layered over ``base``.

        Raises ConfigurationError if the file cannot be read or parsed.
        """
        config = base or cls()
        path = Path(path)

        try:
            with open(path, "r") as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigurationError(
                message=f"Failed to load YAML config from {path}: {e}",
                config_key=str(path),
                cause=e,
            ) from e

        if not isinstance(data, dict):
            raise ConfigurationError(
                message=f"YAML config {path} must be a mapping",
                config_key=str(path),
            )

        if "monitor_interval_seconds" in data:
            config.monitor_interval_seconds = float(data["monitor_interval_seconds"])
        if "probe_timeout_seconds" in data:
            config.probe_timeout_seconds = float(data["probe_timeout_seconds"])
        if "exec_timeout_seconds" in data:
            config.exec_timeout_seconds = float(data["exec_timeout_seconds"])
        if "settle_seconds" in data:
            config.settle_seconds = float(data["settle_seconds"])
        if "confirm_delay_seconds" in data:
            config.confirm_delay_seconds = float(data["confirm_delay_seconds"])
        if "max_parallel" in data:
            config.max_parallel = int(data["max_parallel"])
        if "default_probe_host" in data:
            config.default_probe_host = str(data["default_probe_host"])
        if "default_probe_port" in data:
            config.default_probe_port = int(data["default_probe_port"])
        if "cluster_domain" in data:
            config.cluster_domain = str(data["cluster_domain"])
        if "kubectl" in data:
            config.kubectl = str(data["kubectl"])
        if "services" in data:
            services = data["services"] or {}
            if not isinstance(services, dict):
                raise ConfigurationError(
                    message="'services' must map service names to hostnames",
                    config_key="services",
                )
            config.services = {str(k): str(v) for k, v in services.items()}

        logger.debug(f"Loaded settings from {path}")
        return config

    def to_dict(self) -> Dict[str, object]:
        return {
            "monitor_interval_seconds": self.monitor_interval_seconds,
            "probe_timeout_seconds": self.probe_timeout_seconds,
            "exec_timeout_seconds": self.exec_timeout_seconds,
            "settle_seconds": self.settle_seconds,
            "confirm_delay_seconds": self.confirm_delay_seconds,
            "max_parallel": self.max_parallel,
            "default_probe_host": self.default_probe_host,
            "default_probe_port": self.default_probe_port,
            "cluster_domain": self.cluster_domain,
            "kubectl": self.kubectl,
            "services": dict(self.services),
        }
