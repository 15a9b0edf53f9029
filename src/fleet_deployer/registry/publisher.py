"""Build an image locally and push it to a registry."""

from __future__ import annotations

import shlex
import shutil
import tempfile
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterator, Optional, Union

from ..errors import AuthError, BuildError, DeployerError, PushError
from ..executor import CommandExecutor
from ..models import ArtifactRef
from ..utils.logging import get_logger

logger = get_logger(__name__)

_USERNAME_VAR = "FLEET_DEPLOYER_REGISTRY_USERNAME"
_PASSWORD_VAR = "FLEET_DEPLOYER_REGISTRY_PASSWORD"


@dataclass(frozen=True)
class RegistryCredential:
    """Registry login, valid only inside ``ImagePublisher.registry_session``."""

    username: str
    password: str = field(repr=False)
    server: Optional[str] = None


@dataclass
class RegistrySession:
    """An authenticated registry login backed by a private docker config dir."""

    config_dir: Path
    server: Optional[str]

    @property
    def env(self) -> Dict[str, str]:
        return {"DOCKER_CONFIG": str(self.config_dir)}


class ImagePublisher:
    """Builds the application image and pushes it with a scoped registry login."""

    def __init__(
        self,
        executor: CommandExecutor,
        credential: Optional[RegistryCredential] = None,
        *,
        docker_binary: str = "docker",
        build_timeout: Optional[float] = None,
    ) -> None:
        self.executor = executor
        self.credential = credential
        self.docker = docker_binary
        self.build_timeout = build_timeout

    def publish(self, artifact: ArtifactRef, build_context: Union[str, Path]) -> None:
        """Build, authenticate, push, de-authenticate.

        Raises:
            BuildError: the build failed; nothing else was attempted
            AuthError: login failed; no push and no logout were attempted
            PushError: push failed; logout already ran
        """
        self.build(artifact, build_context)
        with self.registry_session() as session:
            self.push(artifact, session)
        logger.info("Published %s", artifact)

    def build(self, artifact: ArtifactRef, build_context: Union[str, Path]) -> None:
        logger.info("Building %s from %s", artifact, build_context)
        command = (
            f"{self.docker} build -t {shlex.quote(artifact.reference)} "
            f"{shlex.quote(str(build_context))}"
        )
        result = self.executor.execute(None, command, timeout=self.build_timeout)
        if not result.succeeded:
            raise BuildError(f"Image build failed: {result.describe_failure()}", result=result)

    @contextmanager
    def registry_session(self) -> Iterator[Optional[RegistrySession]]:
        """Log in for the duration of the block and always log out afterwards.

        Yields None when no credential is configured; pushes then rely on the
        local engine's existing auth. A failed login raises ``AuthError``
        before the block runs, so there is nothing to release.
        """
        if self.credential is None:
            yield None
            return

        session = self._login(self.credential)
        try:
            yield session
        finally:
            self._logout(session)

    def push(self, artifact: ArtifactRef, session: Optional[RegistrySession] = None) -> None:
        logger.info("Pushing %s", artifact)
        result = self.executor.execute(
            None,
            f"{self.docker} push {shlex.quote(artifact.reference)}",
            secrets=session.env if session else None,
        )
        if not result.succeeded:
            raise PushError(f"Image push failed: {result.describe_failure()}", result=result)

    def _login(self, credential: RegistryCredential) -> RegistrySession:
        config_dir = Path(tempfile.mkdtemp(prefix="fleet-deployer-registry-"))
        session = RegistrySession(config_dir=config_dir, server=credential.server)
        server = f" {shlex.quote(credential.server)}" if credential.server else ""
        command = (
            f'printf "%s" "${_PASSWORD_VAR}" | '
            f'{self.docker} login --username "${_USERNAME_VAR}" --password-stdin{server}'
        )
        secrets = {
            _USERNAME_VAR: credential.username,
            _PASSWORD_VAR: credential.password,
            **session.env,
        }
        logger.info("Authenticating to registry %s", credential.server or "(default)")
        try:
            result = self.executor.execute(None, command, secrets=secrets)
        except Exception:
            shutil.rmtree(config_dir, ignore_errors=True)
            raise
        if not result.succeeded:
            shutil.rmtree(config_dir, ignore_errors=True)
            raise AuthError(f"Registry login failed: {result.describe_failure()}", result=result)
        return session

    def _logout(self, session: RegistrySession) -> None:
        server = f" {shlex.quote(session.server)}" if session.server else ""
        try:
            result = self.executor.execute(None, f"{self.docker} logout{server}", secrets=session.env)
            if not result.succeeded:
                logger.warning("Registry logout failed: %s", result.describe_failure())
        except DeployerError as exc:
            # Must not replace an in-flight push error.
            logger.warning("Registry logout failed: %s", exc)
        finally:
            # The login token lives only in this directory.
            shutil.rmtree(session.config_dir, ignore_errors=True)
