"""Ordered stage execution with fail-fast and always-run cleanup."""

from __future__ import annotations

import threading
import time
from typing import List, Optional, Sequence

from .errors import PipelineCancelled
from .executor import CancelToken
from .models import PipelineResult, Stage, StageOutcome, StageStatus
from .utils.logging import get_logger

logger = get_logger(__name__)


class PipelineSequencer:
    """
    Runs required stages strictly in order and stops at the first failure.
    Every non-required (cleanup) stage then runs exactly once, whether the
    required stages succeeded, failed or were cancelled.

    Args:
        cancel_token: Token fired on run timeout or Ctrl-C; shared with the
            executors used by the required stages so outstanding commands abort
        run_timeout: Seconds before the whole run is cancelled, None for no limit
    """

    def __init__(
        self,
        cancel_token: Optional[CancelToken] = None,
        run_timeout: Optional[float] = None,
    ) -> None:
        self.cancel_token = cancel_token or CancelToken()
        self.run_timeout = run_timeout

    def run(self, stages: Sequence[Stage]) -> PipelineResult:
        outcomes = [StageOutcome(name=stage.name, required=stage.required) for stage in stages]
        result = PipelineResult(stages=outcomes)
        pairs = list(zip(stages, outcomes))

        logger.info("=" * 60)
        logger.info("🚀 PIPELINE: %s", " -> ".join(stage.name for stage in stages))
        logger.info("=" * 60)

        timer = self._start_timer()
        try:
            for stage, outcome in pairs:
                if not stage.required:
                    continue
                if result.failed_stage is not None:
                    outcome.status = StageStatus.SKIPPED
                    continue
                self._run_stage(stage, outcome)
                if outcome.status is StageStatus.FAILED:
                    result.failed_stage = stage.name
                    result.error = outcome.error
        finally:
            if timer is not None:
                timer.cancel()
            cleanup_errors = self._run_cleanup([p for p in pairs if not p[0].required])
            if cleanup_errors:
                result.cleanup_succeeded = False
                result.cleanup_error = cleanup_errors[0]

        if result.succeeded:
            logger.info("🎉 Pipeline succeeded")
        else:
            logger.error("💥 Pipeline failed at stage %s: %s", result.failed_stage, result.error)
        if not result.cleanup_succeeded:
            logger.warning("Cleanup reported an error: %s", result.cleanup_error)
        return result

    def _run_stage(self, stage: Stage, outcome: StageOutcome) -> None:
        logger.info("▶ Stage %s", stage.name)
        started = time.monotonic()
        try:
            if stage.required:
                self.cancel_token.raise_if_cancelled()
            stage.action()
            outcome.status = StageStatus.SUCCESS
        except KeyboardInterrupt:
            self.cancel_token.cancel("interrupted")
            outcome.status = StageStatus.FAILED
            outcome.error = PipelineCancelled(f"Stage {stage.name} interrupted")
        except Exception as exc:
            outcome.status = StageStatus.FAILED
            outcome.error = exc
        finally:
            outcome.duration = time.monotonic() - started

        if outcome.status is StageStatus.SUCCESS:
            logger.info("✅ Stage %s done in %.1fs", stage.name, outcome.duration)
        else:
            logger.error("❌ Stage %s failed: %s", stage.name, outcome.error)

    def _run_cleanup(self, pairs) -> List[BaseException]:
        errors: List[BaseException] = []
        for stage, outcome in pairs:
            self._run_stage(stage, outcome)
            if outcome.error is not None:
                errors.append(outcome.error)
        return errors

    def _start_timer(self) -> Optional[threading.Timer]:
        if not self.run_timeout:
            return None
        timer = threading.Timer(
            self.run_timeout,
            self.cancel_token.cancel,
            args=(f"run exceeded {self.run_timeout:g}s",),
        )
        timer.daemon = True
        timer.start()
        return timer
