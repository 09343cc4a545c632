"""
Network Partition Fault Injector.

============================================================
CHAOS TESTING FOR KUBERNETES SERVICES
Network Partition Module
============================================================

PURPOSE:
--------
Cuts a service off from a dependency, or drops a share of its packets,
for a bounded time, then puts the network back exactly as it was.

For every running pod of the source service it:

1. Measures connectivity to the target
2. Installs iptables DROP rules inside the pod
3. Monitors packet-drop counters while the fault is active
4. Removes exactly the rules it installed
5. Measures connectivity again and reports

PHILOSOPHY:
-----------
A chaos tool must never become the outage. Every applied rule gets
exactly one removal attempt, whether the run expires or is interrupted,
and anything that could not be removed is reported with the command
that removes it.

============================================================
RUN MODES
============================================================

1. LIVE
   - Rules are really installed through `kubectl exec`
   - Abortable countdown before the first rule

2. DRY RUN
   - Commands are logged, never executed
   - Every pod reports applied and restored

============================================================
USAGE
============================================================

Command line:

    network-partition partition -s order-payment-service -t postgres -d 30

From Python:

    import asyncio

    from network_partition import (
        KubectlExecutor,
        KubectlPodLister,
        PartitionOrchestrator,
        PartitionSettings,
        PartitionSpec,
        TargetResolver,
        summarize,
    )

    spec = PartitionSpec.create(
        source_service="order-payment-service",
        target_service="postgres",
        duration_seconds=30,
        dry_run=True,
    )
    settings = PartitionSettings.from_env()

    orchestrator = PartitionOrchestrator(
        spec=spec,
        resolver=TargetResolver(
            KubectlPodLister(),
            service_map=settings.service_map(spec.namespace),
        ),
        executor=KubectlExecutor(spec.namespace),
        settings=settings,
    )

    results = asyncio.run(orchestrator.run())
    text, exit_code = summarize(results, spec)
    print(text)

============================================================
"""

# Models
from .models import (
    DEFAULT_NAMESPACE,
    Direction,
    TrafficScope,
    RuleAction,
    PodState,
    PartitionSpec,
    PodTarget,
    RuleMatch,
    RuleDescriptor,
    PartitionResult,
)

# Exceptions
from .exceptions import (
    Severity,
    PartitionError,
    ConfigurationError,
    SpecValidationError,
    ResolutionError,
    NoRunningPodsError,
    ExecutionError,
    RestorationError,
    StateTransitionError,
)

# Configuration
from .config import (
    PLATFORM_SERVICES,
    PartitionSettings,
    default_service_map,
)

# Logging
from .logs import (
    SUCCESS,
    log_success,
    setup_logging,
)

# Rules
from .rules import (
    compile_directions,
    compile_apply,
    compile_remove,
    is_inverse,
    render_command,
    remediation_command,
    remediation_commands,
)

# Transport
from .executor import (
    ExecOutput,
    RemoteExecutor,
    KubectlExecutor,
    DryRunExecutor,
)

# Resolution and probing
from .resolver import (
    PodLister,
    KubectlPodLister,
    TargetResolver,
)
from .prober import ConnectivityProber

# Orchestration
from .orchestrator import PartitionOrchestrator

# Reporting
from .reporter import (
    EXIT_OK,
    EXIT_PREFLIGHT,
    EXIT_UNRESTORED,
    summarize,
)


__version__ = "1.0.0"

__all__ = [
    # Models
    "DEFAULT_NAMESPACE",
    "Direction",
    "TrafficScope",
    "RuleAction",
    "PodState",
    "PartitionSpec",
    "PodTarget",
    "RuleMatch",
    "RuleDescriptor",
    "PartitionResult",
    # Exceptions
    "Severity",
    "PartitionError",
    "ConfigurationError",
    "SpecValidationError",
    "ResolutionError",
    "NoRunningPodsError",
    "ExecutionError",
    "RestorationError",
    "StateTransitionError",
    # Configuration
    "PLATFORM_SERVICES",
    "PartitionSettings",
    "default_service_map",
    # Logging
    "SUCCESS",
    "log_success",
    "setup_logging",
    # Rules
    "compile_directions",
    "compile_apply",
    "compile_remove",
    "is_inverse",
    "render_command",
    "remediation_command",
    "remediation_commands",
    # Transport
    "ExecOutput",
    "RemoteExecutor",
    "KubectlExecutor",
    "DryRunExecutor",
    # Resolution and probing
    "PodLister",
    "KubectlPodLister",
    "TargetResolver",
    "ConnectivityProber",
    # Orchestration
    "PartitionOrchestrator",
    # Reporting
    "EXIT_OK",
    "EXIT_PREFLIGHT",
    "EXIT_UNRESTORED",
    "summarize",
]
