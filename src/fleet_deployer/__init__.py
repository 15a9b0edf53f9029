"""fleet-deployer: build an image, publish it, and reconcile a fleet of hosts to run it."""

from .config import AppConfig, load_config
from .errors import (
    AuthError,
    BuildError,
    ConfigError,
    ContainerStartError,
    DeployerError,
    ExecutionTimeout,
    FleetError,
    ImagePullError,
    PipelineCancelled,
    PrereqInstallError,
    PushError,
    UnreachableTarget,
)
from .executor import CancelToken, CommandExecutor
from .models import ArtifactRef, ContainerSpec, ExecutionResult, HostState, PortBinding, Stage, Target
from .pipeline import PipelineSequencer
from .provision import FleetProvisioner, HostReconciler
from .registry import ImagePublisher
from .workflow import DeploymentRequest, DeploymentWorkflow

__version__ = "0.1.0"

__all__ = [
    "AppConfig",
    "ArtifactRef",
    "AuthError",
    "BuildError",
    "CancelToken",
    "CommandExecutor",
    "ConfigError",
    "ContainerSpec",
    "ContainerStartError",
    "DeployerError",
    "DeploymentRequest",
    "DeploymentWorkflow",
    "ExecutionResult",
    "ExecutionTimeout",
    "FleetError",
    "FleetProvisioner",
    "HostReconciler",
    "HostState",
    "ImagePublisher",
    "ImagePullError",
    "PipelineCancelled",
    "PipelineSequencer",
    "PortBinding",
    "PrereqInstallError",
    "PushError",
    "Stage",
    "Target",
    "UnreachableTarget",
    "load_config",
]
