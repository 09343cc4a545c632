"""
Network Partition Report.

============================================================
PURPOSE
============================================================
Renders the end-of-run summary and decides the exit status.

- One line per pod: applied/restored, latency before and after,
  packets dropped
- Aggregates: pods affected, pods restored
- A copyable remediation command for every pod left partitioned

summarize() is pure: it only reads results.

============================================================
EXIT STATUS
============================================================
EXIT_OK         every applied rule was removed
EXIT_PREFLIGHT  aborted before any mutation (bad input, no pods)
EXIT_UNRESTORED at least one pod still carries fault rules

============================================================
"""

from typing import Any, Dict, List, Sequence, Tuple

from .models import DRY_RUN_LATENCY, PartitionResult, PartitionSpec
from .rules import remediation_commands


EXIT_OK = 0
EXIT_PREFLIGHT = 1
EXIT_UNRESTORED = 2

RULE = "=" * 60


def _ms(value, dry_run: bool = False) -> str:
    if value is not None:
        return f"{value}ms"
    return DRY_RUN_LATENCY if dry_run else "unreachable"


def format_result_line(result: PartitionResult, dry_run: bool = False) -> str:
    """
    Single summary line for one pod.

    A pod that was never applied and carries no error was skipped by
    cancellation, not failed.
    """
    if result.applied:
        applied = "APPLIED"
    elif result.error is None:
        applied = "SKIPPED"
    else:
        applied = "FAILED"
    if not result.applied:
        restored = "N/A"
    else:
        restored = "RESTORED" if result.restored else "NOT RESTORED"
    dropped = result.packets_dropped if result.packets_dropped is not None else "n/a"
    return (
        f"{result.pod} - {applied} / {restored} / "
        f"pre: {_ms(result.connectivity_pre_ms, dry_run)} / "
        f"post: {_ms(result.connectivity_post_ms, dry_run)} / "
        f"dropped: {dropped}"
    )


def exit_code_for(results: Sequence[PartitionResult]) -> int:
    """Non-zero iff some pod was applied and not restored."""
    if any(r.needs_manual_cleanup for r in results):
        return EXIT_UNRESTORED
    return EXIT_OK


def summary_stats(results: Sequence[PartitionResult]) -> Dict[str, Any]:
    affected = sum(1 for r in results if r.applied)
    restored = sum(1 for r in results if r.applied and r.restored)
    return {
        "pods_total": len(results),
        "pods_affected": affected,
        "pods_restored": restored,
        "pods_unrestored": affected - restored,
    }


def summarize(
    results: Sequence[PartitionResult],
    spec: PartitionSpec,
    kubectl: str = "kubectl",
) -> Tuple[str, int]:
    """
    Build the summary block.

    Args:
        results: Per-pod results of one run
        spec: The partition that was run
        kubectl: kubectl binary used in remediation commands

    Returns:
        (summary text, exit code)
    """
    stats = summary_stats(results)
    lines: List[str] = [
        RULE,
        "NETWORK PARTITION SUMMARY" + (" (DRY RUN)" if spec.dry_run else ""),
        RULE,
    ]

    if results:
        lines.extend(format_result_line(r, spec.dry_run) for r in results)
    else:
        lines.append("No pods were partitioned")

    lines += [
        "",
        f"Source service: {spec.source_service}",
        f"Target: {spec.target_label}",
        f"Drop rate: {spec.drop_percent}%",
        f"Duration: {spec.duration_seconds:g}s",
        f"Pods affected: {stats['pods_affected']}",
        f"Pods restored: {stats['pods_restored']}",
    ]

    unrestored = [r for r in results if r.needs_manual_cleanup]
    if unrestored:
        lines += [
            "",
            f"{len(unrestored)} pod(s) not restored - manual cleanup required:",
        ]
        for result in unrestored:
            directions = result.rules_remaining or result.rules_applied
            lines.extend(
                f"  {command}"
                for command in remediation_commands(
                    spec, result.pod, result.target_address, directions, kubectl,
                )
            )

    lines.append(RULE)
    return "\n".join(lines), exit_code_for(results)


__all__ = [
    "EXIT_OK",
    "EXIT_PREFLIGHT",
    "EXIT_UNRESTORED",
    "format_result_line",
    "exit_code_for",
    "summary_stats",
    "summarize",
]
