"""Git-based source retrieval."""

from __future__ import annotations

import re
import shlex
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional

from ..executor import CancelToken
from ..local import LocalSession
from ..utils.logging import redact


class GitCommandError(RuntimeError):
    """Raised when a git command fails."""

    def __init__(self, command: List[str], exit_code: int, stderr: str) -> None:
        self.command = command
        self.exit_code = exit_code
        self.stderr = stderr
        super().__init__(f"Git command {' '.join(command)} failed with code {exit_code}: {stderr}")


_URL_USERINFO = re.compile(r"([A-Za-z][A-Za-z0-9+.-]*://)[^/@\s]+@")


def strip_userinfo(text: str) -> str:
    """Drop the ``user:password@`` part of every URL in ``text``."""
    return _URL_USERINFO.sub(r"\1", text)


@dataclass
class GitCloneResult:
    """Details about a completed fetch."""

    path: Path
    commit_sha: str

    @property
    def short_sha(self) -> str:
        return self.commit_sha[:12]


class GitRepositoryManager:
    """Wraps `git` CLI commands for fetching a branch into a build context.

    Args:
        git_binary: git executable
        timeout: Seconds a single git command may run, None for no limit
        cancel_token: Run-wide token; a cancelled run kills an outstanding clone
    """

    def __init__(
        self,
        git_binary: str = "git",
        *,
        timeout: Optional[float] = None,
        cancel_token: Optional[CancelToken] = None,
    ) -> None:
        self.git_binary = git_binary
        self.timeout = timeout
        self.cancel_token = cancel_token

    def fetch(
        self,
        repo_url: str,
        target_dir: Path,
        *,
        branch: Optional[str] = None,
        token: Optional[str] = None,
    ) -> GitCloneResult:
        """Shallow-clone ``branch`` of ``repo_url`` into ``target_dir``.

        ``token`` is sent as an HTTP bearer header through git's
        ``GIT_CONFIG_*`` environment variables, never on the command line.

        Raises:
            GitCommandError: git exited non-zero
            ExecutionTimeout: a git command exceeded ``timeout``
            PipelineCancelled: the run was cancelled while git was running
        """
        target_dir = target_dir.resolve()
        if target_dir.exists():
            shutil.rmtree(target_dir, ignore_errors=True)
        target_dir.parent.mkdir(parents=True, exist_ok=True)

        args = ["clone", "--depth=1"]
        if branch:
            args += ["--branch", branch]
        args += [repo_url, str(target_dir)]
        self._run(args, token=token)

        commit_sha = self._run(["rev-parse", "HEAD"], cwd=target_dir).strip()
        return GitCloneResult(path=target_dir, commit_sha=commit_sha)

    def _run(self, args: List[str], cwd: Optional[Path] = None, token: Optional[str] = None) -> str:
        command = [self.git_binary] + args
        shown = [strip_userinfo(arg) for arg in command]
        session = LocalSession(working_dir=str(cwd) if cwd else None)
        result = session.run(
            " ".join(shlex.quote(arg) for arg in command),
            env=self._env(token),
            timeout=self.timeout,
            cancel=self.cancel_token,
            display=" ".join(shlex.quote(arg) for arg in shown),
        )
        if not result.succeeded:
            stderr = redact(strip_userinfo(result.stderr), [token])
            raise GitCommandError(shown, result.exit_code, stderr)
        return result.stdout

    @staticmethod
    def _env(token: Optional[str]) -> Dict[str, str]:
        """Variables added to the environment of one git call."""
        env = {"GIT_TERMINAL_PROMPT": "0"}
        if token:
            env["GIT_CONFIG_COUNT"] = "1"
            env["GIT_CONFIG_KEY_0"] = "http.extraHeader"
            env["GIT_CONFIG_VALUE_0"] = f"Authorization: Bearer {token}"
        return env
