"""
Network Partition - Exceptions.

============================================================
RESPONSIBILITY
============================================================
Defines all custom exceptions for the partition injector.

- Provides a clear exception hierarchy
- Separates pre-flight, per-pod and restoration failures
- Carries context for log lines and summaries

============================================================
EXCEPTION HIERARCHY
============================================================
PartitionError (base)
├── ConfigurationError
│   └── SpecValidationError
├── ResolutionError
│   └── NoRunningPodsError
├── ExecutionError
├── RestorationError
└── StateTransitionError

============================================================
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


# ============================================================
# SEVERITY LEVELS
# ============================================================

class Severity(Enum):
    """Exception severity levels."""

    LOW = "low"
    """Degrades a measurement, nothing else."""

    MEDIUM = "medium"
    """Isolated to a single pod."""

    HIGH = "high"
    """Aborts the run before any network mutation."""

    CRITICAL = "critical"
    """Leaves fault rules behind on a real host."""


# ============================================================
# BASE EXCEPTION
# ============================================================

class PartitionError(Exception):
    """
    Base exception for all partition injector errors.

    All exceptions carry:
    - severity: for log level and exit status decisions
    - context: for debugging
    - timestamp: when the error occurred
    """

    default_severity: Severity = Severity.MEDIUM

    def __init__(
        self,
        message: str,
        severity: Optional[Severity] = None,
        context: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
    ):
        super().__init__(message)

        self.message = message
        self.severity = severity or self.default_severity
        self.context = context or {}
        self.cause = cause
        self.timestamp = datetime.now(timezone.utc)

        if cause:
            self.context["cause_type"] = type(cause).__name__
            self.context["cause_message"] = str(cause)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize exception for logging."""
        return {
            "type": type(self).__name__,
            "message": self.message,
            "severity": self.severity.value,
            "context": self.context,
            "timestamp": self.timestamp.isoformat(),
            "cause": str(self.cause) if self.cause else None,
        }


# ============================================================
# CONFIGURATION ERRORS
# ============================================================

class ConfigurationError(PartitionError):
    """Error in settings or command line input."""

    default_severity = Severity.HIGH

    def __init__(self, message: str, config_key: Optional[str] = None, **kwargs):
        context = kwargs.pop("context", {})
        if config_key:
            context["config_key"] = config_key
        super().__init__(message, context=context, **kwargs)


class SpecValidationError(ConfigurationError):
    """A PartitionSpec failed validation."""

    def __init__(self, errors: List[str]):
        super().__init__(
            message=f"Invalid partition spec: {'; '.join(errors)}",
            context={"errors": list(errors)},
        )
        self.errors = list(errors)


# ============================================================
# RESOLUTION ERRORS
# ============================================================

class ResolutionError(PartitionError):
    """The pod listing call itself could not be made."""

    default_severity = Severity.HIGH

    def __init__(
        self,
        message: str,
        namespace: Optional[str] = None,
        service: Optional[str] = None,
        **kwargs,
    ):
        context = kwargs.pop("context", {})
        if namespace:
            context["namespace"] = namespace
        if service:
            context["service"] = service
        super().__init__(message, context=context, **kwargs)


class NoRunningPodsError(ResolutionError):
    """Zero running pods were found for the source service."""

    def __init__(self, namespace: str, service: str):
        super().__init__(
            message=f"No running pods found for source service: {service}",
            namespace=namespace,
            service=service,
        )


# ============================================================
# EXECUTION ERRORS
# ============================================================

class ExecutionError(PartitionError):
    """A remote command failed, timed out or could not be started."""

    default_severity = Severity.MEDIUM

    def __init__(
        self,
        message: str,
        pod: Optional[str] = None,
        command: Optional[str] = None,
        returncode: Optional[int] = None,
        stderr: Optional[str] = None,
        **kwargs,
    ):
        context = kwargs.pop("context", {})
        if pod:
            context["pod"] = pod
        if command:
            context["command"] = command
        if returncode is not None:
            context["returncode"] = returncode
        if stderr:
            context["stderr"] = stderr[:500]
        super().__init__(message, context=context, **kwargs)
        self.pod = pod
        self.command = command
        self.returncode = returncode


class RestorationError(PartitionError):
    """A fault rule could not be removed from a pod."""

    default_severity = Severity.CRITICAL

    def __init__(self, pod: str, remediation: List[str], cause: Optional[Exception] = None):
        super().__init__(
            message=f"Failed to restore network on pod {pod}",
            context={"pod": pod, "remediation": list(remediation)},
            cause=cause,
        )
        self.pod = pod
        self.remediation = list(remediation)


# ============================================================
# STATE ERRORS
# ============================================================

class StateTransitionError(PartitionError):
    """Invalid per-pod state transition."""

    default_severity = Severity.HIGH

    def __init__(
        self,
        message: str,
        pod: Optional[str] = None,
        from_state: Optional[str] = None,
        to_state: Optional[str] = None,
        **kwargs,
    ):
        context = kwargs.pop("context", {})
        if pod:
            context["pod"] = pod
        if from_state:
            context["from_state"] = from_state
        if to_state:
            context["to_state"] = to_state
        super().__init__(message, context=context, **kwargs)


__all__ = [
    "Severity",
    "PartitionError",
    "ConfigurationError",
    "SpecValidationError",
    "ResolutionError",
    "NoRunningPodsError",
    "ExecutionError",
    "RestorationError",
    "StateTransitionError",
]
