"""Fan the host reconciler out across the configured targets."""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Sequence

from ..errors import DeployerError, FleetError, ReconcileError
from ..models import ContainerSpec, HostState, Target
from ..utils.logging import get_logger
from .reconciler import HostReconciler, ReconcileOutcome

logger = get_logger(__name__)


@dataclass
class FleetReport:
    """Per-target outcomes in configuration order."""

    outcomes: List[ReconcileOutcome] = field(default_factory=list)

    @property
    def failures(self) -> Dict[str, DeployerError]:
        return {o.address: o.error for o in self.outcomes if o.error is not None}

    @property
    def succeeded(self) -> bool:
        return all(o.succeeded for o in self.outcomes)

    def outcome_for(self, address: str) -> ReconcileOutcome:
        for outcome in self.outcomes:
            if outcome.address == address:
                return outcome
        raise KeyError(address)

    def to_dict(self) -> dict:
        return {"targets": [o.to_dict() for o in self.outcomes]}


class FleetProvisioner:
    """Reconciles every target independently; one failure never stops the others.

    Targets share no host-level state, so they may run on a thread pool.
    ``max_workers=1`` reconciles them one after another.
    """

    def __init__(self, reconciler: HostReconciler, *, max_workers: int = 4) -> None:
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        self.reconciler = reconciler
        self.max_workers = max_workers

    def provision(
        self,
        targets: Sequence[Target],
        spec_for: Callable[[Target], ContainerSpec],
    ) -> FleetReport:
        """Reconcile all ``targets``.

        Raises:
            FleetError: at least one target failed; ``error.report`` carries
                every target's outcome, ``error.failures`` only the failed ones.
        """
        targets = list(targets)
        logger.info("Provisioning %d target(s) with up to %d worker(s)", len(targets), self.max_workers)

        if self.max_workers == 1 or len(targets) <= 1:
            outcomes = [self._reconcile_one(target, spec_for) for target in targets]
        else:
            outcomes = self._reconcile_parallel(targets, spec_for)

        report = FleetReport(outcomes=outcomes)
        for outcome in outcomes:
            if outcome.succeeded:
                logger.info("  ✓ %s: %s", outcome.address, outcome.state.value)
            else:
                logger.error("  ✗ %s: %s", outcome.address, outcome.error.kind if outcome.error else "failed")

        failures = report.failures
        if failures:
            raise FleetError(failures, report=report)
        return report

    def _reconcile_parallel(
        self,
        targets: List[Target],
        spec_for: Callable[[Target], ContainerSpec],
    ) -> List[ReconcileOutcome]:
        workers = min(self.max_workers, len(targets))
        pool = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="reconcile")
        try:
            # map() keeps configuration order regardless of completion order.
            outcomes = list(pool.map(lambda t: self._reconcile_one(t, spec_for), targets))
        except BaseException:
            # Ctrl-C lands here in the main thread. Abort the commands still
            # running on other targets and drop queued ones before waiting.
            self.reconciler.executor.cancel_token.cancel("interrupted")
            pool.shutdown(wait=True, cancel_futures=True)
            raise
        pool.shutdown(wait=True)
        return outcomes

    def _reconcile_one(self, target: Target, spec_for: Callable[[Target], ContainerSpec]) -> ReconcileOutcome:
        try:
            return self.reconciler.attempt(target, spec_for(target))
        except Exception as exc:
            logger.exception("[%s] Unexpected error during reconciliation", target)
            error = ReconcileError(f"Unexpected error reconciling {target}: {exc}")
            error.__cause__ = exc
            return ReconcileOutcome(address=target.address, state=HostState.FAILED, error=error)
