"""Command execution against the local machine or a remote target."""

from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Callable, Iterator, Mapping, Optional, Union

from .errors import PipelineCancelled, UnreachableTarget
from .local import LocalSession
from .models import ExecutionResult, Target
from .ssh import SSHConnectionError, SSHSession
from .utils.logging import get_logger, redact

logger = get_logger(__name__)

Session = Union[LocalSession, SSHSession]


class CancelToken:
    """Run-wide cancellation flag shared by every executor call."""

    def __init__(self) -> None:
        self._event = threading.Event()
        self.reason: Optional[str] = None

    def cancel(self, reason: str = "cancelled") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise PipelineCancelled(f"Run cancelled: {self.reason}")


class TargetChannel:
    """Commands bound to one open session. Obtained from ``CommandExecutor.open``."""

    def __init__(self, executor: "CommandExecutor", target: Optional[Target], session: Session) -> None:
        self.executor = executor
        self.target = target
        self._session = session

    @property
    def label(self) -> str:
        return self.target.address if self.target else "local"

    def execute(
        self,
        command: str,
        secrets: Optional[Mapping[str, str]] = None,
        timeout: Optional[float] = None,
    ) -> ExecutionResult:
        """Run ``command`` with ``secrets`` exported into its environment for this call only.

        A non-zero exit is reported through ``ExecutionResult.succeeded``; only
        transport failures, timeouts and cancellation raise.
        """
        secrets = dict(secrets or {})
        hidden = list(secrets.values())
        if self.target is not None and self.target.credential is not None:
            hidden.extend(self.target.credential.secrets())
        display = redact(command, hidden)
        timeout = self.executor.default_timeout if timeout is None else timeout

        self.executor.cancel_token.raise_if_cancelled()
        logger.debug("[%s] $ %s", self.label, display)
        try:
            result = self._session.run(
                command,
                env=secrets or None,
                timeout=timeout,
                cancel=self.executor.cancel_token,
                display=display,
            )
        except SSHConnectionError as exc:
            raise UnreachableTarget(self.label, redact(str(exc), hidden)) from None

        # The command may have echoed a secret; keep it out of anything we retain.
        result.stdout = redact(result.stdout, hidden)
        result.stderr = redact(result.stderr, hidden)
        if not result.succeeded:
            logger.debug("[%s] exit %d: %s", self.label, result.exit_code, result.stderr)
        return result


class CommandExecutor:
    """Runs shell commands locally or on a target host.

    Args:
        default_timeout: Seconds a single command may run, None for no limit
        cancel_token: Shared cancellation flag, a fresh one by default
        ssh_factory: Builds the SSH session for a target (tests inject fakes here)
        local_factory: Builds the session for local commands
        working_dir: Working directory for local commands
    """

    def __init__(
        self,
        *,
        default_timeout: Optional[float] = 600,
        cancel_token: Optional[CancelToken] = None,
        ssh_factory: Optional[Callable[[Target], SSHSession]] = None,
        local_factory: Optional[Callable[[], LocalSession]] = None,
        working_dir: Optional[str] = None,
    ) -> None:
        self.default_timeout = default_timeout
        self.cancel_token = cancel_token or CancelToken()
        self.working_dir = working_dir
        self._ssh_factory = ssh_factory or self._default_ssh_factory
        self._local_factory = local_factory or (lambda: LocalSession(working_dir=self.working_dir))

    @contextmanager
    def open(self, target: Optional[Target] = None) -> Iterator[TargetChannel]:
        """Hold one connection to ``target`` for the duration of the block.

        The connection (and with it the host credential) is released on exit,
        whether the block succeeded or not.
        """
        session = self._session_for(target)
        label = target.address if target else "local"
        try:
            session.connect()
        except SSHConnectionError as exc:
            hidden = target.credential.secrets() if target and target.credential else ()
            raise UnreachableTarget(label, redact(str(exc), hidden)) from None
        try:
            yield TargetChannel(self, target, session)
        finally:
            session.close()

    def execute(
        self,
        target: Optional[Target],
        command: str,
        secrets: Optional[Mapping[str, str]] = None,
        timeout: Optional[float] = None,
    ) -> ExecutionResult:
        """One-shot call: connect, run ``command`` and disconnect."""
        with self.open(target) as channel:
            return channel.execute(command, secrets=secrets, timeout=timeout)

    def _session_for(self, target: Optional[Target]) -> Session:
        if target is None or target.is_local:
            return self._local_factory()
        return self._ssh_factory(target)

    @staticmethod
    def _default_ssh_factory(target: Target) -> SSHSession:
        if target.credential is None:
            raise UnreachableTarget(target.address, "no SSH credential configured")
        return SSHSession(target.address, target.credential)
