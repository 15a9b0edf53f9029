"""Bring one target host to the desired container state."""

from __future__ import annotations

import shlex
from dataclasses import dataclass, field
from typing import List, Optional

from ..config import RuntimeConfig
from ..errors import (
    ContainerStartError,
    DeployerError,
    ImagePullError,
    PrereqInstallError,
)
from ..executor import CommandExecutor, TargetChannel
from ..models import ContainerSpec, ExecutionResult, HostState, Target
from ..utils.logging import get_logger

logger = get_logger(__name__)

# Actions that change installed software on the host.
INSTALL_ACTIONS = frozenset(
    {"install-prerequisites", "add-package-source", "install-runtime", "enable-service"}
)


@dataclass
class ReconcileOutcome:
    """Final state of one target plus every mutating action taken on it."""

    address: str
    state: HostState = HostState.UNCHECKED
    actions: List[str] = field(default_factory=list)
    error: Optional[DeployerError] = None

    @property
    def succeeded(self) -> bool:
        return self.state is HostState.CONTAINER_RUNNING

    @property
    def installed(self) -> bool:
        return any(action in INSTALL_ACTIONS for action in self.actions)

    def to_dict(self) -> dict:
        return {
            "address": self.address,
            "state": self.state.value,
            "actions": list(self.actions),
            "error_kind": self.error.kind if self.error else None,
            "error": str(self.error) if self.error else None,
        }


class HostReconciler:
    """
    Per-host state machine:

        UNCHECKED -> PREREQ_VERIFIED -> IMAGE_FETCHED -> CONTAINER_RUNNING

    with FAILED reachable from every state. The runtime is installed only when
    its version probe fails, so repeat runs never reinstall. An existing
    container with the desired name is always stopped and removed before the
    new one starts; nothing is updated in place.
    """

    def __init__(
        self,
        executor: CommandExecutor,
        runtime: Optional[RuntimeConfig] = None,
        *,
        docker_binary: str = "docker",
    ) -> None:
        self.executor = executor
        self.runtime = runtime or RuntimeConfig()
        self.docker = docker_binary

    def reconcile(self, target: Target, spec: ContainerSpec) -> ReconcileOutcome:
        """Reconcile ``target`` and raise the failure, if any."""
        outcome = self.attempt(target, spec)
        if outcome.error is not None:
            raise outcome.error
        return outcome

    def attempt(self, target: Target, spec: ContainerSpec) -> ReconcileOutcome:
        """Reconcile ``target`` and record the result instead of raising.

        Partial host changes made before a failure are left in place.
        """
        outcome = ReconcileOutcome(address=target.address)
        logger.info("[%s] Reconciling container %s -> %s", target, spec.name, spec.image)
        try:
            with self.executor.open(target) as channel:
                self._ensure_runtime(channel, outcome)
                self._advance(outcome, HostState.PREREQ_VERIFIED)
                self._fetch_image(channel, spec, outcome)
                self._advance(outcome, HostState.IMAGE_FETCHED)
                self._replace_container(channel, spec, outcome)
                self._advance(outcome, HostState.CONTAINER_RUNNING)
        except DeployerError as exc:
            logger.error("[%s] Reconciliation failed in state %s: %s", target, outcome.state.value, exc)
            outcome.state = HostState.FAILED
            outcome.error = exc
        return outcome

    # Step 1: prerequisite runtime

    def _ensure_runtime(self, channel: TargetChannel, outcome: ReconcileOutcome) -> None:
        runtime = self.runtime
        probe = self._run(channel, runtime.probe_command)
        if probe.succeeded:
            logger.info("[%s] %s present (%s), skipping install", channel.label, runtime.name, probe.stdout)
            if runtime.ensure_service_running and runtime.service:
                self._ensure_service_active(channel, outcome)
            return

        logger.info("[%s] %s not found, installing", channel.label, runtime.name)
        if runtime.prerequisite_packages:
            packages = " ".join(shlex.quote(p) for p in runtime.prerequisite_packages)
            self._install_step(channel, outcome, "install-prerequisites", runtime.install_command.format(packages=packages))
        if runtime.package_source_url:
            self._install_step(
                channel,
                outcome,
                "add-package-source",
                f"curl -fsSL {shlex.quote(runtime.package_source_url)} "
                f"-o {shlex.quote(runtime.package_source_path)}",
            )
        self._install_step(
            channel,
            outcome,
            "install-runtime",
            runtime.install_command.format(packages=shlex.quote(runtime.package)),
        )
        if runtime.service:
            service = shlex.quote(runtime.service)
            self._install_step(channel, outcome, "enable-service", f"systemctl enable {service}")
            self._install_step(channel, outcome, "start-service", f"systemctl start {service}")

    def _ensure_service_active(self, channel: TargetChannel, outcome: ReconcileOutcome) -> None:
        """Started now and enabled at boot, without reinstalling anything."""
        service = shlex.quote(self.runtime.service)
        if not self._run(channel, f"systemctl is-active --quiet {service}").succeeded:
            logger.info("[%s] Service %s inactive, starting it", channel.label, self.runtime.service)
            self._install_step(channel, outcome, "start-service", f"systemctl start {service}")
        if not self._run(channel, f"systemctl is-enabled --quiet {service}").succeeded:
            logger.info("[%s] Service %s not enabled at boot, enabling it", channel.label, self.runtime.service)
            self._install_step(channel, outcome, "ensure-service-enabled", f"systemctl enable {service}")

    def _install_step(self, channel: TargetChannel, outcome: ReconcileOutcome, action: str, command: str) -> None:
        result = self._run(channel, command)
        outcome.actions.append(action)
        if not result.succeeded:
            raise PrereqInstallError(
                f"{action} failed on {channel.label}: {result.describe_failure()}", result=result
            )

    # Step 2: image

    def _fetch_image(self, channel: TargetChannel, spec: ContainerSpec, outcome: ReconcileOutcome) -> None:
        result = self._run(channel, f"{self.docker} pull {shlex.quote(spec.image.reference)}")
        outcome.actions.append("pull-image")
        if not result.succeeded:
            raise ImagePullError(
                f"Pulling {spec.image} on {channel.label} failed: {result.describe_failure()}", result=result
            )

    # Step 3: container

    def _replace_container(self, channel: TargetChannel, spec: ContainerSpec, outcome: ReconcileOutcome) -> None:
        name = shlex.quote(spec.name)
        existing = self._run(channel, f"{self.docker} container inspect --format '{{{{.Id}}}}' {name}")
        if existing.succeeded:
            logger.info("[%s] Replacing stale container %s", channel.label, spec.name)
            for command in (f"{self.docker} stop {name}", f"{self.docker} rm {name}"):
                result = self._run(channel, command)
                if not result.succeeded:
                    raise ContainerStartError(
                        f"Could not remove stale container {spec.name} on {channel.label}: "
                        f"{result.describe_failure()}",
                        result=result,
                    )
            outcome.actions.append("remove-container")

        ports = "".join(f" -p {binding}" for binding in spec.port_bindings)
        result = self._run(
            channel,
            f"{self.docker} run -d --name {name}{ports} {shlex.quote(spec.image.reference)}",
        )
        outcome.actions.append("start-container")
        if not result.succeeded:
            raise ContainerStartError(
                f"Starting {spec.name} on {channel.label} failed: {result.describe_failure()}", result=result
            )

    def _run(self, channel: TargetChannel, command: str) -> ExecutionResult:
        if channel.target is not None and channel.target.become:
            command = f"sudo -n {command}"
        return channel.execute(command)

    @staticmethod
    def _advance(outcome: ReconcileOutcome, state: HostState) -> None:
        logger.debug("[%s] %s -> %s", outcome.address, outcome.state.value, state.value)
        outcome.state = state
