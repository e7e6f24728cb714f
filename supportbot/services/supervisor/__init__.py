"""Connection supervision, health monitoring and keep-alive probing."""

from .health import ConnectionState, DeploymentState, HealthRecord, HealthMetrics, HealthMonitor
from .supervisor import ConnectionSupervisor, exit_process, INITIAL_FAILURE, AUTH_FAILURE
from .prober import KeepAliveProber, ProbeOutcome

__all__ = [
    "ConnectionState",
    "DeploymentState",
    "HealthRecord",
    "HealthMetrics",
    "HealthMonitor",
    "ConnectionSupervisor",
    "exit_process",
    "INITIAL_FAILURE",
    "AUTH_FAILURE",
    "KeepAliveProber",
    "ProbeOutcome",
]
