import os
import signal
import threading
import time
import unittest

from fleet_deployer.errors import FleetError, ImagePullError, PipelineCancelled, UnreachableTarget
from fleet_deployer.executor import CancelToken
from fleet_deployer.models import ArtifactRef, ContainerSpec, HostState, PortBinding, Stage
from fleet_deployer.pipeline import PipelineSequencer
from fleet_deployer.provision import FleetProvisioner, HostReconciler

from tests.fakes import FakeHost, make_fleet_executor, make_target

SPEC = ContainerSpec(name="svc", image=ArtifactRef("app", "v1"), port_bindings=(PortBinding(5000, 5000),))


def spec_for(_target):
    return SPEC


class FleetProvisionerTests(unittest.TestCase):
    def _hosts(self):
        return {
            "10.0.0.1": FakeHost(),
            "10.0.0.2": FakeHost(reachable=False),
            "10.0.0.3": FakeHost(runtime_installed=True, service_active=True),
            "10.0.0.4": FakeHost(runtime_installed=True, service_active=True, missing_images={"app:v1"}),
        }

    def _provision(self, hosts, max_workers):
        provisioner = FleetProvisioner(HostReconciler(make_fleet_executor(hosts)), max_workers=max_workers)
        targets = [make_target(address) for address in hosts]
        return provisioner.provision(targets, spec_for)

    def test_all_healthy_targets_succeed(self) -> None:
        hosts = {"10.0.0.1": FakeHost(), "10.0.0.2": FakeHost(runtime_installed=True, service_active=True)}
        report = self._provision(hosts, max_workers=4)
        self.assertTrue(report.succeeded)
        self.assertEqual([o.address for o in report.outcomes], ["10.0.0.1", "10.0.0.2"])
        for host in hosts.values():
            self.assertEqual(host.containers["svc"].image, "app:v1")

    def test_failures_are_collected_while_others_proceed(self) -> None:
        hosts = self._hosts()
        with self.assertRaises(FleetError) as ctx:
            self._provision(hosts, max_workers=4)

        error = ctx.exception
        self.assertEqual(set(error.failures), {"10.0.0.2", "10.0.0.4"})
        self.assertIsInstance(error.failures["10.0.0.2"], UnreachableTarget)
        self.assertIsInstance(error.failures["10.0.0.4"], ImagePullError)

        report = error.report
        self.assertEqual(report.outcome_for("10.0.0.1").state, HostState.CONTAINER_RUNNING)
        self.assertEqual(report.outcome_for("10.0.0.3").state, HostState.CONTAINER_RUNNING)
        self.assertIn("svc", hosts["10.0.0.1"].containers)
        self.assertIn("svc", hosts["10.0.0.3"].containers)

    def test_sequential_and_parallel_agree(self) -> None:
        reports = []
        for workers in (1, 4):
            with self.assertRaises(FleetError) as ctx:
                self._provision(self._hosts(), max_workers=workers)
            reports.append(ctx.exception.report.to_dict())
        self.assertEqual(reports[0], reports[1])

    def test_unexpected_error_for_one_target_keeps_the_others(self) -> None:
        hosts = {"10.0.0.1": FakeHost(), "10.0.0.2": FakeHost(), "10.0.0.3": FakeHost()}

        def flaky_spec_for(target):
            if target.address == "10.0.0.2":
                raise KeyError("no container settings for 10.0.0.2")
            return SPEC

        provisioner = FleetProvisioner(HostReconciler(make_fleet_executor(hosts)), max_workers=3)
        with self.assertRaises(FleetError) as ctx:
            provisioner.provision([make_target(a) for a in hosts], flaky_spec_for)

        report = ctx.exception.report
        self.assertEqual(list(ctx.exception.failures), ["10.0.0.2"])
        self.assertEqual(report.outcome_for("10.0.0.2").state, HostState.FAILED)
        self.assertEqual(report.outcome_for("10.0.0.2").to_dict()["error_kind"], "ReconcileError")
        self.assertEqual(report.outcome_for("10.0.0.1").state, HostState.CONTAINER_RUNNING)
        self.assertEqual(report.outcome_for("10.0.0.3").state, HostState.CONTAINER_RUNNING)

    @unittest.skipUnless(hasattr(signal, "SIGINT") and os.name == "posix", "needs POSIX signals")
    def test_ctrl_c_aborts_running_and_queued_targets(self) -> None:
        token = CancelToken()
        hosts = {f"10.0.1.{i}": FakeHost(delay=2.0) for i in range(1, 5)}
        provisioner = FleetProvisioner(
            HostReconciler(make_fleet_executor(hosts, cancel_token=token)), max_workers=2
        )
        targets = [make_target(address) for address in hosts]
        stage = Stage("provision", lambda: provisioner.provision(targets, spec_for))

        interrupt = threading.Timer(0.3, os.kill, args=(os.getpid(), signal.SIGINT))
        started = time.monotonic()
        interrupt.start()
        try:
            result = PipelineSequencer(cancel_token=token).run([stage])
        finally:
            interrupt.cancel()
        elapsed = time.monotonic() - started

        self.assertLess(elapsed, 1.5)
        self.assertTrue(token.cancelled)
        self.assertIsInstance(result.error, PipelineCancelled)
        # Neither the running nor the queued targets completed a command.
        self.assertTrue(all(not host.commands for host in hosts.values()))

    def test_run_timeout_aborts_parallel_provisioning(self) -> None:
        token = CancelToken()
        hosts = {f"10.0.2.{i}": FakeHost(delay=2.0) for i in range(1, 4)}
        provisioner = FleetProvisioner(
            HostReconciler(make_fleet_executor(hosts, cancel_token=token)), max_workers=3
        )
        targets = [make_target(address) for address in hosts]
        stage = Stage("provision", lambda: provisioner.provision(targets, spec_for))

        started = time.monotonic()
        result = PipelineSequencer(cancel_token=token, run_timeout=0.3).run([stage])

        self.assertLess(time.monotonic() - started, 1.5)
        self.assertIsInstance(result.error, FleetError)
        self.assertEqual(
            {error.kind for error in result.error.failures.values()}, {"PipelineCancelled"}
        )
        self.assertEqual(len(result.error.failures), 3)

    def test_rejects_zero_workers(self) -> None:
        with self.assertRaises(ValueError):
            FleetProvisioner(HostReconciler(make_fleet_executor({})), max_workers=0)


if __name__ == "__main__":
    unittest.main()
