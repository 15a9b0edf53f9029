"""Local command execution session."""

from __future__ import annotations

import os
import signal
import subprocess
import time
from typing import Dict, Optional

from ..errors import ExecutionTimeout, PipelineCancelled
from ..models import ExecutionResult

_POLL_INTERVAL = 0.2
_POSIX = os.name == "posix"


class LocalSession:
    """
    Local command execution session.

    Provides the same interface as SSHSession but executes commands on this
    machine through ``/bin/bash``. Used for image builds, registry pushes and
    targets addressed as ``local``.
    """

    def __init__(self, working_dir: Optional[str] = None, shell: str = "/bin/bash") -> None:
        """
        Args:
            working_dir: Working directory for commands. Defaults to the current directory.
            shell: Shell used to interpret command strings.
        """
        self.working_dir = working_dir or os.getcwd()
        self.shell = shell
        self._connected = False

    def connect(self) -> None:
        """No-op for local session (for API compatibility with SSHSession)."""
        self._connected = True

    def close(self) -> None:
        """No-op for local session (for API compatibility with SSHSession)."""
        self._connected = False

    def __enter__(self) -> "LocalSession":
        self.connect()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

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
        Execute a command locally and wait for it.

        Args:
            command: The command to execute
            env: Extra environment variables for this call only
            timeout: Total timeout in seconds, None waits forever
            cancel: Optional CancelToken checked while the command runs
            display: Redacted form of the command used in results and errors

        Raises:
            ExecutionTimeout: the command exceeded ``timeout``; the process is killed
            PipelineCancelled: ``cancel`` fired; the process is killed
        """
        display = display or command
        process = subprocess.Popen(
            [self.shell, "-c", command],
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            cwd=self.working_dir,
            env=self._get_env(env),
            # Own process group so a kill also reaches the command's children.
            start_new_session=_POSIX,
        )
        deadline = time.monotonic() + timeout if timeout is not None else None

        while True:
            if cancel is not None and cancel.cancelled:
                self._kill(process)
                raise PipelineCancelled(f"Cancelled while running: {display}")
            wait = _POLL_INTERVAL
            if deadline is not None:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    self._kill(process)
                    raise ExecutionTimeout(display, timeout)
                wait = min(wait, remaining)
            try:
                stdout, stderr = process.communicate(timeout=wait)
                break
            except subprocess.TimeoutExpired:
                continue

        return ExecutionResult(
            invocation=display,
            exit_code=process.returncode,
            stdout=stdout.strip(),
            stderr=stderr.strip(),
        )

    def _kill(self, process: subprocess.Popen) -> None:
        if _POSIX:
            try:
                os.killpg(process.pid, signal.SIGKILL)
            except ProcessLookupError:
                pass
        else:
            process.kill()
        process.communicate()

    def _get_env(self, extra: Optional[Dict[str, str]]) -> Dict[str, str]:
        """Environment for one subprocess: ours plus the call-scoped extras."""
        env = os.environ.copy()
        if extra:
            env.update(extra)
        return env
