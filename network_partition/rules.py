"""
Network Partition - Rule Compiler.

============================================================
RESPONSIBILITY
============================================================
Turns a PartitionSpec and a resolved target address into firewall
rule descriptors, and descriptors into iptables commands.

- compile_apply / compile_remove are pure functions of
  (spec, address, direction)
- Both are built from one shared RuleMatch, so REMOVE is the exact
  inverse of APPLY by construction
- The orchestrator recompiles REMOVE at cleanup time instead of
  remembering the command it ran

============================================================
RULE SHAPE
============================================================
EGRESS:  iptables -A OUTPUT [-d PEER] [-p tcp --dport PORT] <drop>
INGRESS: iptables -A INPUT  [-s PEER] [-p tcp --sport PORT] <drop>

<drop> is "-j DROP" for a hard partition, otherwise
"-m statistic --mode random --probability 0.NN -j DROP".

============================================================
"""

import shlex
from typing import Iterable, List, Optional, Tuple

from .models import (
    Direction,
    PartitionSpec,
    RuleAction,
    RuleDescriptor,
    RuleMatch,
)


def compile_directions(spec: PartitionSpec) -> Tuple[Direction, ...]:
    """Directions a spec installs rules for, in apply order."""
    if spec.bidirectional:
        return (Direction.EGRESS, Direction.INGRESS)
    return (Direction.EGRESS,)


def _drop_probability(spec: PartitionSpec) -> Optional[float]:
    if spec.is_full_block:
        return None
    return round(spec.drop_percent / 100, 2)


def compile_match(
    spec: PartitionSpec,
    address: Optional[str],
    direction: Direction = Direction.EGRESS,
) -> RuleMatch:
    """The filter fields shared by the APPLY and REMOVE rules."""
    return RuleMatch(
        direction=direction,
        peer=address or None,
        port=spec.target_port,
        drop_probability=_drop_probability(spec),
    )


def compile_apply(
    spec: PartitionSpec,
    address: Optional[str],
    direction: Direction = Direction.EGRESS,
) -> RuleDescriptor:
    """Rule that installs the fault."""
    return RuleDescriptor(
        action=RuleAction.APPLY,
        match=compile_match(spec, address, direction),
    )


def compile_remove(
    spec: PartitionSpec,
    address: Optional[str],
    direction: Direction = Direction.EGRESS,
) -> RuleDescriptor:
    """Rule that removes the fault installed by compile_apply."""
    return RuleDescriptor(
        action=RuleAction.REMOVE,
        match=compile_match(spec, address, direction),
    )


def is_inverse(apply: RuleDescriptor, remove: RuleDescriptor) -> bool:
    """True when ``remove`` deletes exactly what ``apply`` installs."""
    return (
        apply.action is RuleAction.APPLY
        and remove.action is RuleAction.REMOVE
        and apply.match == remove.match
    )


def render_args(rule: RuleDescriptor) -> List[str]:
    """iptables argv for a rule."""
    match = rule.match
    args = ["iptables", rule.action.flag, match.direction.chain]

    if match.peer:
        args += ["-d" if match.direction is Direction.EGRESS else "-s", match.peer]

    if match.port:
        port_flag = "--dport" if match.direction is Direction.EGRESS else "--sport"
        args += ["-p", "tcp", port_flag, str(match.port)]

    if match.drop_probability is not None:
        args += [
            "-m", "statistic",
            "--mode", "random",
            "--probability", f"{match.drop_probability:.2f}",
        ]

    args += ["-j", "DROP"]
    return args


def render_command(rule: RuleDescriptor) -> str:
    """iptables command line for a rule, safe to pass to ``sh -c``."""
    return shlex.join(render_args(rule))


def remediation_command(
    namespace: str,
    pod: str,
    rule: RuleDescriptor,
    kubectl: str = "kubectl",
) -> str:
    """Copyable command an operator runs to remove a rule by hand."""
    return shlex.join([
        kubectl, "exec", "-n", namespace, pod, "--",
        "sh", "-c", render_command(rule),
    ])


def remediation_commands(
    spec: PartitionSpec,
    pod: str,
    address: Optional[str],
    directions: Iterable[Direction],
    kubectl: str = "kubectl",
) -> List[str]:
    """Manual cleanup commands for the rules left on ``pod``."""
    return [
        remediation_command(
            spec.namespace, pod, compile_remove(spec, address, direction), kubectl,
        )
        for direction in directions
    ]


__all__ = [
    "compile_directions",
    "compile_match",
    "compile_apply",
    "compile_remove",
    "is_inverse",
    "render_args",
    "render_command",
    "remediation_command",
    "remediation_commands",
]
