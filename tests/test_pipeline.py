import threading
import time
import unittest

from fleet_deployer.errors import PipelineCancelled
from fleet_deployer.executor import CancelToken
from fleet_deployer.models import Stage, StageStatus
from fleet_deployer.pipeline import PipelineSequencer


class PipelineSequencerTests(unittest.TestCase):
    def setUp(self) -> None:
        self.calls = []

    def _record(self, name, error=None):
        def action():
            self.calls.append(name)
            if error is not None:
                raise error
        return action

    def test_stages_run_in_order(self) -> None:
        result = PipelineSequencer().run(
            [
                Stage("fetch", self._record("fetch")),
                Stage("publish", self._record("publish")),
                Stage("provision", self._record("provision")),
                Stage("cleanup", self._record("cleanup"), required=False),
            ]
        )
        self.assertTrue(result.succeeded)
        self.assertEqual(result.exit_code, 0)
        self.assertEqual(self.calls, ["fetch", "publish", "provision", "cleanup"])

    def test_failure_stops_later_stages_and_cleanup_runs_once(self) -> None:
        result = PipelineSequencer().run(
            [
                Stage("publish", self._record("publish", RuntimeError("build broke"))),
                Stage("provision", self._record("provision")),
                Stage("cleanup", self._record("cleanup"), required=False),
            ]
        )
        self.assertEqual(self.calls, ["publish", "cleanup"])
        self.assertEqual(result.failed_stage, "publish")
        self.assertEqual(str(result.error), "build broke")
        self.assertEqual(result.outcome("provision").status, StageStatus.SKIPPED)
        self.assertEqual(result.exit_code, 1)

    def test_cleanup_failure_does_not_change_exit_code(self) -> None:
        result = PipelineSequencer().run(
            [
                Stage("publish", self._record("publish")),
                Stage("cleanup", self._record("cleanup", OSError("disk gone")), required=False),
            ]
        )
        self.assertTrue(result.succeeded)
        self.assertEqual(result.exit_code, 0)
        self.assertFalse(result.cleanup_succeeded)
        self.assertIsInstance(result.cleanup_error, OSError)

    def test_cleanup_failure_keeps_original_error(self) -> None:
        result = PipelineSequencer().run(
            [
                Stage("provision", self._record("provision", ValueError("host down"))),
                Stage("cleanup", self._record("cleanup", OSError("disk gone")), required=False),
            ]
        )
        self.assertEqual(result.failed_stage, "provision")
        self.assertIsInstance(result.error, ValueError)
        self.assertEqual(result.exit_code, 1)

    def test_run_timeout_cancels_outstanding_work(self) -> None:
        token = CancelToken()

        def slow():
            deadline = time.monotonic() + 5
            while time.monotonic() < deadline:
                token.raise_if_cancelled()
                time.sleep(0.02)

        started = time.monotonic()
        result = PipelineSequencer(cancel_token=token, run_timeout=0.2).run(
            [
                Stage("provision", slow),
                Stage("after", self._record("after")),
                Stage("cleanup", self._record("cleanup"), required=False),
            ]
        )
        self.assertLess(time.monotonic() - started, 4)
        self.assertIsInstance(result.error, PipelineCancelled)
        self.assertEqual(self.calls, ["cleanup"])
        self.assertTrue(token.cancelled)

    def test_keyboard_interrupt_cancels_and_runs_cleanup(self) -> None:
        token = CancelToken()
        result = PipelineSequencer(cancel_token=token).run(
            [
                Stage("publish", self._record("publish", KeyboardInterrupt())),
                Stage("cleanup", self._record("cleanup"), required=False),
            ]
        )
        self.assertTrue(token.cancelled)
        self.assertIsInstance(result.error, PipelineCancelled)
        self.assertEqual(self.calls, ["publish", "cleanup"])

    def test_timer_is_stopped_after_a_fast_run(self) -> None:
        token = CancelToken()
        before = threading.active_count()
        PipelineSequencer(cancel_token=token, run_timeout=30).run([Stage("publish", self._record("publish"))])
        self.assertFalse(token.cancelled)
        self.assertLessEqual(threading.active_count(), before + 1)


if __name__ == "__main__":
    unittest.main()
