"""High-level workflow: wire configuration into the staged pipeline."""

from __future__ import annotations

import shlex
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from .config import AppConfig
from .errors import AuthError, FleetError, PushError
from .executor import CancelToken, CommandExecutor
from .gitops import GitRepositoryManager, strip_userinfo
from .models import ArtifactRef, ContainerSpec, PipelineResult, Stage, Target
from .pipeline import PipelineSequencer
from .provision import FleetProvisioner, FleetReport, HostReconciler
from .registry import ImagePublisher, RegistryCredential
from .runlog import RunLog
from .utils.logging import get_logger
from .workspace import WorkspaceContext, WorkspaceManager

logger = get_logger(__name__)

DEFAULT_TAG = "latest"


@dataclass
class DeploymentRequest:
    """Per-invocation overrides captured from the CLI."""

    tag: Optional[str] = None
    build_context: Optional[str] = None
    max_workers: Optional[int] = None
    run_timeout: Optional[float] = None


@dataclass
class DeploymentRun:
    """Everything a caller may want to inspect after a run."""

    result: PipelineResult
    artifact: Optional[ArtifactRef]
    fleet: Optional[FleetReport]
    log_file: Optional[Path] = None

    @property
    def exit_code(self) -> int:
        return self.result.exit_code


class DeploymentWorkflow:
    """Fetch (optional) -> Publish -> Provision, then Cleanup no matter what."""

    def __init__(
        self,
        config: AppConfig,
        *,
        executor: Optional[CommandExecutor] = None,
        cleanup_executor: Optional[CommandExecutor] = None,
        git_manager: Optional[GitRepositoryManager] = None,
        workspace_manager: Optional[WorkspaceManager] = None,
        run_log: Optional[RunLog] = None,
    ) -> None:
        self.config = config
        self.cancel_token = executor.cancel_token if executor else CancelToken()
        self.executor = executor or CommandExecutor(
            default_timeout=config.pipeline.command_timeout,
            cancel_token=self.cancel_token,
        )
        # Cleanup must still work after the run-wide token has fired.
        self.cleanup_executor = cleanup_executor or CommandExecutor(
            default_timeout=config.pipeline.command_timeout,
        )
        self.git_manager = git_manager or GitRepositoryManager(
            timeout=config.pipeline.command_timeout,
            cancel_token=self.cancel_token,
        )
        self.workspace_manager = workspace_manager or WorkspaceManager(Path(config.pipeline.workspace_root))
        self.run_log = run_log if run_log is not None else RunLog(Path(config.pipeline.log_dir))

        # Run-scoped state, reset by run().
        self._request = DeploymentRequest()
        self._workspace: Optional[WorkspaceContext] = None
        self._build_context: Optional[Path] = None
        self._commit_sha: Optional[str] = None
        self._artifact: Optional[ArtifactRef] = None
        self._image_built = False
        self._fleet_report: Optional[FleetReport] = None

    def run(self, request: Optional[DeploymentRequest] = None) -> DeploymentRun:
        self.config.validate()
        self._reset(request or DeploymentRequest())
        targets = self.config.build_targets()
        self.run_log.start(targets)

        stages: List[Stage] = []
        if self.config.source.repo_url:
            stages.append(Stage("fetch", self._fetch_source))
        stages.append(Stage("publish", self._publish))
        stages.append(Stage("provision", lambda: self._provision(targets)))
        stages.append(Stage("cleanup", self._cleanup, required=False))

        sequencer = PipelineSequencer(
            cancel_token=self.cancel_token,
            run_timeout=self._request.run_timeout or self.config.pipeline.run_timeout,
        )
        result = sequencer.run(stages)

        self.run_log.set_fleet(self._fleet_report)
        self.run_log.finish(result)
        return DeploymentRun(
            result=result,
            artifact=self._artifact,
            fleet=self._fleet_report,
            log_file=self.run_log.path,
        )

    def _reset(self, request: DeploymentRequest) -> None:
        self._request = request
        self._workspace = None
        self._build_context = None
        self._commit_sha = None
        self._artifact = None
        self._image_built = False
        self._fleet_report = None

    # Stages

    def _fetch_source(self) -> None:
        source = self.config.source
        public_url = strip_userinfo(source.repo_url)
        self._workspace = self.workspace_manager.prepare(public_url)
        logger.info("📦 Fetching %s (%s)", public_url, source.branch)
        clone = self.git_manager.fetch(
            source.repo_url,
            self._workspace.source_dir,
            branch=source.branch,
            token=source.token,
        )
        self._commit_sha = clone.short_sha
        self._build_context = clone.path / source.build_context
        self.workspace_manager.update_metadata(self._workspace, commit_sha=clone.commit_sha)
        logger.info("   Checked out %s", clone.short_sha)

    def _publish(self) -> None:
        artifact = self.resolve_artifact()
        build_context = (
            Path(self._request.build_context)
            if self._request.build_context
            else self._build_context or Path(self.config.source.build_context)
        )
        publisher = ImagePublisher(
            self.executor,
            self._registry_credential(),
            build_timeout=self.config.pipeline.build_timeout,
        )
        try:
            publisher.publish(artifact, build_context)
        except (AuthError, PushError):
            self._image_built = True
            raise
        self._image_built = True

    def _provision(self, targets: List[Target]) -> None:
        artifact = self.resolve_artifact()
        spec = ContainerSpec(
            name=self.config.container.container_name,
            image=artifact,
            port_bindings=self.config.port_bindings(),
        )
        max_workers = self._request.max_workers or self.config.pipeline.max_workers
        provisioner = FleetProvisioner(
            HostReconciler(self.executor, self.config.runtime),
            max_workers=max_workers,
        )
        try:
            self._fleet_report = provisioner.provision(targets, lambda target: spec)
        except FleetError as exc:
            self._fleet_report = exc.report
            raise

    def _cleanup(self) -> None:
        errors = []
        if self._image_built and self.config.pipeline.remove_local_image and self._artifact:
            result = self.cleanup_executor.execute(
                None, f"docker rmi {shlex.quote(self._artifact.reference)}"
            )
            if not result.succeeded:
                errors.append(f"could not remove local image: {result.describe_failure()}")
        if self._workspace is not None:
            try:
                self.workspace_manager.cleanup(self._workspace)
            except OSError as exc:
                errors.append(f"could not remove workspace {self._workspace.run_dir}: {exc}")
        if errors:
            raise RuntimeError("; ".join(errors))

    # Helpers

    def resolve_artifact(self) -> ArtifactRef:
        """Resolve the image reference once; every later call returns the same object."""
        if self._artifact is None:
            tag = self._request.tag or self.config.registry.tag or self._commit_sha or DEFAULT_TAG
            self._artifact = ArtifactRef(repository=self.config.registry.repository, tag=tag)
            self.run_log.set_artifact(self._artifact)
            logger.info("🏷️  Artifact: %s", self._artifact)
        return self._artifact

    def _registry_credential(self) -> Optional[RegistryCredential]:
        registry = self.config.registry
        if not (registry.username and registry.password):
            return None
        return RegistryCredential(
            username=registry.username,
            password=registry.password,
            server=registry.server,
        )
