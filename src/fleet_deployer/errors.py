"""Error taxonomy for the deployment pipeline."""

from __future__ import annotations

from typing import TYPE_CHECKING, Dict, Optional

if TYPE_CHECKING:
    from .models import ExecutionResult


class DeployerError(RuntimeError):
    """Base class for every error raised by fleet-deployer."""

    def __init__(self, message: str, *, result: Optional["ExecutionResult"] = None) -> None:
        super().__init__(message)
        self.result = result

    @property
    def kind(self) -> str:
        return type(self).__name__


class ConfigError(ValueError):
    """Raised when the run configuration is missing or malformed."""

    pass


# Executor errors


class ExecutorError(DeployerError):
    pass


class UnreachableTarget(ExecutorError):
    """The remote host could not be reached or authenticated against."""

    def __init__(self, address: str, reason: str) -> None:
        super().__init__(f"Target {address} is unreachable: {reason}")
        self.address = address
        self.reason = reason


class ExecutionTimeout(ExecutorError):
    """A command did not finish within its timeout."""

    def __init__(self, invocation: str, timeout: float) -> None:
        super().__init__(f"Command timed out after {timeout:g}s: {invocation}")
        self.invocation = invocation
        self.timeout = timeout


class PipelineCancelled(ExecutorError):
    """The run was cancelled while a command was outstanding."""

    pass


# Image publisher errors


class PublishError(DeployerError):
    pass


class BuildError(PublishError):
    pass


class AuthError(PublishError):
    pass


class PushError(PublishError):
    pass


# Host reconciler errors


class ReconcileError(DeployerError):
    pass


class PrereqInstallError(ReconcileError):
    pass


class ImagePullError(ReconcileError):
    pass


class ContainerStartError(ReconcileError):
    pass


class FleetError(DeployerError):
    """Aggregate error: one or more targets failed reconciliation.

    ``failures`` maps target address to the error raised for it; ``report``
    holds the full per-target outcome, including the targets that succeeded.
    """

    def __init__(self, failures: Dict[str, DeployerError], report=None) -> None:
        summary = ", ".join(f"{address} ({error.kind})" for address, error in failures.items())
        super().__init__(f"{len(failures)} target(s) failed: {summary}")
        self.failures = failures
        self.report = report
