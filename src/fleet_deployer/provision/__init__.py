"""Host reconciliation and fleet fan-out."""

from .fleet import FleetProvisioner, FleetReport
from .reconciler import INSTALL_ACTIONS, HostReconciler, ReconcileOutcome

__all__ = [
    "FleetProvisioner",
    "FleetReport",
    "HostReconciler",
    "INSTALL_ACTIONS",
    "ReconcileOutcome",
]
