"""SSH session management built on Paramiko."""

from __future__ import annotations

import shlex
import time
from typing import Callable, Dict, Optional

import paramiko

from ..errors import ExecutionTimeout, PipelineCancelled
from ..models import ExecutionResult
from .credentials import SSHCredentials

_POLL_INTERVAL = 0.1
_CHUNK = 4096


class SSHConnectionError(RuntimeError):
    """Raised when an SSH connection cannot be established."""

    pass


class SSHSession:
    """High-level wrapper around paramiko.SSHClient for one host."""

    def __init__(
        self,
        host: str,
        credentials: SSHCredentials,
        *,
        client_factory: Callable[[], paramiko.SSHClient] | None = None,
    ) -> None:
        self.host = host
        self.credentials = credentials
        self._client_factory = client_factory or paramiko.SSHClient
        self._client: Optional[paramiko.SSHClient] = None

    def __enter__(self) -> "SSHSession":
        self.connect()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:  # type: ignore[override]
        self.close()

    def connect(self) -> None:
        if self._client:
            return
        client = self._client_factory()
        client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
        try:
            connect_kwargs = {
                "hostname": self.host,
                "port": self.credentials.port,
                "username": self.credentials.username,
                "timeout": self.credentials.timeout,
                "look_for_keys": False,
                "allow_agent": False,
            }
            if self.credentials.auth_method == "password":
                connect_kwargs["password"] = self.credentials.password
            else:
                connect_kwargs["key_filename"] = self.credentials.key_path
                if self.credentials.passphrase:
                    connect_kwargs["passphrase"] = self.credentials.passphrase
            client.connect(**connect_kwargs)
        except Exception as exc:  # pragma: no cover - network errors hard to simulate
            client.close()
            raise SSHConnectionError(str(exc)) from exc
        self._client = client

    def close(self) -> None:
        if self._client:
            self._client.close()
            self._client = None

    def run(
        self,
        command: str,
        *,
        env: Optional[Dict[str, str]] = None,
        timeout: Optional[float] = None,
        cancel=None,
        display: Optional[str] = None,
    ) -> ExecutionResult:
        """
        Execute a command on the remote host and wait for it.

        Extra environment variables are written to the stdin of a remote
        ``bash -s`` rather than placed on the command line, so their values
        never show up in the remote process list or in sshd's AcceptEnv
        filtering.

        Raises:
            SSHConnectionError: the transport dropped while the command ran
                (including a channel closed without an exit status)
            ExecutionTimeout: the command exceeded ``timeout``; the channel is closed
            PipelineCancelled: ``cancel`` fired; the channel is closed
        """
        if not self._client:
            self.connect()
        assert self._client is not None
        display = display or command

        try:
            if env:
                stdin, stdout, stderr = self._client.exec_command("bash -s")
                stdin.write(self._script(command, env))
                stdin.flush()
                stdin.channel.shutdown_write()
            else:
                stdin, stdout, stderr = self._client.exec_command(command)
        except (paramiko.SSHException, OSError) as exc:
            raise SSHConnectionError(str(exc)) from exc

        channel = stdout.channel
        stdout_chunks = []
        stderr_chunks = []
        deadline = time.monotonic() + timeout if timeout is not None else None

        while not channel.exit_status_ready():
            if cancel is not None and cancel.cancelled:
                channel.close()
                raise PipelineCancelled(f"Cancelled while running: {display}")
            if deadline is not None and time.monotonic() > deadline:
                channel.close()
                raise ExecutionTimeout(display, timeout)
            # Drain output so a chatty command cannot stall on a full window.
            if not self._drain(channel, stdout_chunks, stderr_chunks):
                time.sleep(_POLL_INTERVAL)

        exit_status = channel.recv_exit_status()
        while self._drain(channel, stdout_chunks, stderr_chunks):
            pass
        # Paramiko reports -1 when the channel closed without an exit status.
        if exit_status == -1 and self._transport_lost(channel):
            raise SSHConnectionError(f"Connection to {self.host} lost while running: {display}")

        return ExecutionResult(
            invocation=display,
            exit_code=exit_status,
            stdout="".join(stdout_chunks).strip(),
            stderr="".join(stderr_chunks).strip(),
        )

    @staticmethod
    def _drain(channel, stdout_chunks, stderr_chunks) -> bool:
        activity = False
        while channel.recv_ready():
            stdout_chunks.append(channel.recv(_CHUNK).decode("utf-8", errors="replace"))
            activity = True
        while channel.recv_stderr_ready():
            stderr_chunks.append(channel.recv_stderr(_CHUNK).decode("utf-8", errors="replace"))
            activity = True
        return activity

    @staticmethod
    def _transport_lost(channel) -> bool:
        transport = channel.get_transport()
        return channel.closed or transport is None or not transport.is_active()

    @staticmethod
    def _script(command: str, env: Dict[str, str]) -> str:
        exports = "".join(f"export {name}={shlex.quote(value)}\n" for name, value in env.items())
        return f"{exports}{command}\n"
