"""
Network Partition Models.

============================================================
PURPOSE
============================================================
Data models for the network partition injector.

- PartitionSpec: what the operator asked for (immutable)
- PodTarget: a pod and the address its rules filter on
- RuleDescriptor: one firewall rule, apply or remove
- PartitionResult: per-pod outcome, owned by the orchestrator

============================================================
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Set, Tuple

from .exceptions import SpecValidationError


DEFAULT_NAMESPACE = "lomash-wood"
DEFAULT_DURATION_SECONDS = 60
DEFAULT_DROP_PERCENT = 100

# Shown in place of a latency that a dry run never measures
DRY_RUN_LATENCY = "n/a (dry run)"

# Targets whose loss tends to cascade through every dependent service
STATEFUL_TARGETS = ("postgres", "redis")


# ============================================================
# DIRECTIONS AND ACTIONS
# ============================================================

class Direction(Enum):
    """Traffic direction of a single rule, relative to the pod."""
    EGRESS = "egress"
    INGRESS = "ingress"

    @property
    def chain(self) -> str:
        """iptables chain the rule lives in."""
        return "OUTPUT" if self is Direction.EGRESS else "INPUT"


class TrafficScope(Enum):
    """Directions covered by a partition on one pod."""
    EGRESS = "egress"
    BOTH = "both"


class RuleAction(Enum):
    """Whether a rule installs or removes the fault."""
    APPLY = "apply"
    REMOVE = "remove"

    @property
    def flag(self) -> str:
        return "-A" if self is RuleAction.APPLY else "-D"


# ============================================================
# PER-POD STATE MACHINE
# ============================================================

class PodState(Enum):
    """Lifecycle of one pod through a partition run."""
    PENDING = "PENDING"
    MEASURED_PRE = "MEASURED_PRE"
    APPLIED = "APPLIED"
    MONITORING = "MONITORING"
    RESTORING = "RESTORING"
    RESTORED = "RESTORED"
    RESTORE_FAILED = "RESTORE_FAILED"
    MEASURED_POST = "MEASURED_POST"
    DONE = "DONE"


VALID_TRANSITIONS: Dict[PodState, Set[PodState]] = {
    PodState.PENDING: {PodState.MEASURED_PRE},
    PodState.MEASURED_PRE: {PodState.APPLIED, PodState.DONE},
    PodState.APPLIED: {PodState.MONITORING, PodState.RESTORING},
    PodState.MONITORING: {PodState.RESTORING},
    PodState.RESTORING: {PodState.RESTORED, PodState.RESTORE_FAILED},
    PodState.RESTORED: {PodState.MEASURED_POST},
    PodState.RESTORE_FAILED: {PodState.MEASURED_POST},
    PodState.MEASURED_POST: {PodState.DONE},
    PodState.DONE: set(),
}

# Once a pod has reached one of these, restoration has already been attempted
RESTORE_ATTEMPTED_STATES = frozenset({
    PodState.RESTORING,
    PodState.RESTORED,
    PodState.RESTORE_FAILED,
    PodState.MEASURED_POST,
})


# ============================================================
# PARTITION SPEC
# ============================================================

@dataclass(frozen=True)
class PartitionSpec:
    """
    A partition request, built once from operator input.

    When neither target_service nor target_host is set the partition
    covers all traffic of the source pods (a broad partition).
    """
    source_service: str
    target_service: Optional[str] = None
    target_host: Optional[str] = None
    target_port: Optional[int] = None
    drop_percent: int = DEFAULT_DROP_PERCENT
    duration_seconds: float = DEFAULT_DURATION_SECONDS
    bidirectional: bool = False
    dry_run: bool = False
    namespace: str = DEFAULT_NAMESPACE

    @classmethod
    def create(cls, **kwargs) -> "PartitionSpec":
        """Build a spec and raise SpecValidationError if it is invalid."""
        spec = cls(**kwargs)
        errors = spec.validate()
        if errors:
            raise SpecValidationError(errors)
        return spec

    def validate(self) -> List[str]:
        """Validate the request, return list of errors."""
        errors = []

        if not self.source_service:
            errors.append("source_service is required")

        if not self.namespace:
            errors.append("namespace is required")

        if self.target_service and self.target_host:
            errors.append("target_service and target_host are mutually exclusive")

        if not 1 <= self.drop_percent <= 100:
            errors.append(f"drop_percent must be in [1, 100], got {self.drop_percent}")

        if self.duration_seconds < 0:
            errors.append("duration_seconds must not be negative")

        if self.target_port is not None and not 1 <= self.target_port <= 65535:
            errors.append(f"target_port must be in [1, 65535], got {self.target_port}")

        return errors

    @property
    def is_broad(self) -> bool:
        """True when no target narrows the partition."""
        return not self.target_service and not self.target_host

    @property
    def is_full_block(self) -> bool:
        return self.drop_percent >= 100

    @property
    def scope(self) -> TrafficScope:
        return TrafficScope.BOTH if self.bidirectional else TrafficScope.EGRESS

    @property
    def target_label(self) -> str:
        return self.target_service or self.target_host or "all"

    def to_dict(self) -> Dict[str, object]:
        return {
            "namespace": self.namespace,
            "source_service": self.source_service,
            "target": self.target_label,
            "target_port": self.target_port,
            "drop_percent": self.drop_percent,
            "duration_seconds": self.duration_seconds,
            "bidirectional": self.bidirectional,
            "dry_run": self.dry_run,
        }


# ============================================================
# POD TARGET
# ============================================================

@dataclass(frozen=True)
class PodTarget:
    """A source pod plus the resolved address its rules filter on."""
    pod: str
    address: Optional[str]       # None for a broad partition
    probe_host: str
    probe_port: int


# ============================================================
# RULE DESCRIPTOR
# ============================================================

@dataclass(frozen=True)
class RuleMatch:
    """Filter fields shared by an APPLY rule and its REMOVE inverse."""
    direction: Direction
    peer: Optional[str] = None
    port: Optional[int] = None
    drop_probability: Optional[float] = None  # None means full block


@dataclass(frozen=True)
class RuleDescriptor:
    """
    One firewall rule.

    APPLY and REMOVE descriptors compiled from the same spec and address
    share an identical match and differ only in action.
    """
    action: RuleAction
    match: RuleMatch

    @property
    def direction(self) -> Direction:
        return self.match.direction

    @property
    def peer(self) -> Optional[str]:
        return self.match.peer

    @property
    def port(self) -> Optional[int]:
        return self.match.port

    @property
    def drop_probability(self) -> Optional[float]:
        return self.match.drop_probability

    @property
    def is_full_block(self) -> bool:
        return self.match.drop_probability is None


# ============================================================
# PARTITION RESULT
# ============================================================

@dataclass
class PartitionResult:
    """
    Outcome for one pod.

    Created when the pod enters the state machine and written only by
    that pod's branch of the orchestrator.
    """
    pod: str
    direction: TrafficScope
    applied: bool = False
    restored: bool = False
    connectivity_pre_ms: Optional[int] = None
    connectivity_post_ms: Optional[int] = None
    packets_dropped: Optional[int] = None

    state: PodState = PodState.PENDING
    target_address: Optional[str] = None
    rules_applied: Tuple[Direction, ...] = ()
    rules_remaining: Tuple[Direction, ...] = ()   # installed and not yet removed
    error: Optional[str] = None
    history: List[PodState] = field(default_factory=list)

    @property
    def needs_manual_cleanup(self) -> bool:
        """Applied but not restored: fault rules are still on the host."""
        return self.applied and not self.restored

    @property
    def restore_attempted(self) -> bool:
        return self.state in RESTORE_ATTEMPTED_STATES or (
            self.state is PodState.DONE and self.applied
        )

    def to_dict(self) -> Dict[str, object]:
        return {
            "pod": self.pod,
            "direction": self.direction.value,
            "applied": self.applied,
            "restored": self.restored,
            "connectivity_pre_ms": self.connectivity_pre_ms,
            "connectivity_post_ms": self.connectivity_post_ms,
            "packets_dropped": self.packets_dropped,
            "state": self.state.value,
            "target_address": self.target_address,
            "rules_applied": [d.value for d in self.rules_applied],
            "rules_remaining": [d.value for d in self.rules_remaining],
            "error": self.error,
        }
