"""In-process stand-ins for hosts, used instead of real SSH targets."""

from __future__ import annotations

import shlex
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set, Tuple

from fleet_deployer.errors import ExecutionTimeout, PipelineCancelled
from fleet_deployer.executor import CancelToken, CommandExecutor
from fleet_deployer.models import ExecutionResult, Target
from fleet_deployer.ssh import SSHConnectionError, SSHCredentials


@dataclass
class FakeContainer:
    image: str
    ports: List[str]
    running: bool = True


@dataclass
class FakeHost:
    """A simulated yum/systemd/docker host."""

    runtime_installed: bool = False
    service_active: bool = False
    service_enabled: bool = False
    reachable: bool = True
    delay: float = 0.0
    images: Set[str] = field(default_factory=set)
    containers: Dict[str, FakeContainer] = field(default_factory=dict)
    missing_images: Set[str] = field(default_factory=set)
    failing: Tuple[str, ...] = ()
    commands: List[str] = field(default_factory=list)
    envs: List[Dict[str, str]] = field(default_factory=list)

    def handle(self, command: str, env: Optional[Dict[str, str]] = None) -> Tuple[int, str, str]:
        self.commands.append(command)
        self.envs.append(dict(env or {}))
        if command.startswith("sudo -n "):
            command = command[len("sudo -n "):]
        for prefix in self.failing:
            if command.startswith(prefix):
                return 1, "", f"simulated failure: {prefix}"

        argv = shlex.split(command)
        if argv[:2] == ["docker", "--version"]:
            if self.runtime_installed:
                return 0, "Docker version 24.0.7, build afdd53b", ""
            return 127, "", "bash: docker: command not found"
        if argv[:1] == ["yum"]:
            if "docker-ce" in argv:
                self.runtime_installed = True
            return 0, "Complete!", ""
        if argv[:1] == ["curl"]:
            return 0, "", ""
        if argv[:1] == ["systemctl"]:
            if argv[1] == "is-active":
                return (0, "", "") if self.service_active else (3, "", "")
            if argv[1] == "is-enabled":
                return (0, "", "") if self.service_enabled else (1, "", "")
            if argv[1] == "enable":
                self.service_enabled = True
            if argv[1] == "start":
                if not self.runtime_installed:
                    return 5, "", "Unit docker.service not found."
                self.service_active = True
            return 0, "", ""
        if argv[:1] == ["docker"]:
            return self._docker(argv[1:])
        return 127, "", f"unknown command: {command}"

    def _docker(self, args: List[str]) -> Tuple[int, str, str]:
        if not (self.runtime_installed and self.service_active):
            return 1, "", "Cannot connect to the Docker daemon"
        verb = args[0]
        if verb == "pull":
            image = args[1]
            if image in self.missing_images:
                return 1, "", f"manifest for {image} not found"
            self.images.add(image)
            return 0, f"Status: Downloaded newer image for {image}", ""
        if verb == "container" and args[1] == "inspect":
            name = args[-1]
            if name in self.containers:
                return 0, f"id-{name}", ""
            return 1, "", f"Error: No such container: {name}"
        if verb == "stop":
            self.containers[args[1]].running = False
            return 0, args[1], ""
        if verb == "rm":
            del self.containers[args[1]]
            return 0, args[1], ""
        if verb == "run":
            name, ports, rest = None, [], list(args[1:])
            while rest and rest[0].startswith("-"):
                flag = rest.pop(0)
                if flag == "--name":
                    name = rest.pop(0)
                elif flag == "-p":
                    ports.append(rest.pop(0))
            image = rest[0]
            if name in self.containers:
                return 125, "", f'Conflict. The container name "/{name}" is already in use'
            if image not in self.images:
                return 125, "", f"Unable to find image '{image}' locally"
            self.containers[name] = FakeContainer(image=image, ports=ports)
            return 0, f"id-{name}", ""
        return 1, "", f"unsupported docker verb: {verb}"

    @property
    def install_commands(self) -> List[str]:
        return [c for c in self.commands if "yum" in c or "curl" in c or "systemctl enable" in c]


class FakeHostSession:
    """Drop-in for SSHSession / LocalSession backed by a FakeHost."""

    def __init__(self, host: FakeHost, address: str = "fake") -> None:
        self.host = host
        self.address = address
        self.connected = False
        self.closed = False

    def connect(self) -> None:
        if not self.host.reachable:
            raise SSHConnectionError(f"[Errno 113] No route to host: {self.address}")
        self.connected = True

    def close(self) -> None:
        self.closed = True

    def run(self, command, *, env=None, timeout=None, cancel=None, display=None) -> ExecutionResult:
        # A slow host blocks each command for ``delay`` seconds unless cancelled.
        deadline = time.monotonic() + self.host.delay
        while True:
            if cancel is not None and cancel.cancelled:
                raise PipelineCancelled(f"Cancelled while running: {display or command}")
            if time.monotonic() >= deadline:
                break
            time.sleep(0.01)
        exit_code, stdout, stderr = self.host.handle(command, env)
        return ExecutionResult(
            invocation=display or command,
            exit_code=exit_code,
            stdout=stdout,
            stderr=stderr,
        )


class ScriptedLocalSession:
    """Local session stub: every command succeeds unless it starts with a failing prefix.

    Commands starting with a ``timing_out`` prefix raise ``ExecutionTimeout``.
    """

    def __init__(
        self,
        log: List[Tuple[str, Dict[str, str]]],
        failing: Tuple[str, ...] = (),
        timing_out: Tuple[str, ...] = (),
    ) -> None:
        self.log = log
        self.failing = failing
        self.timing_out = timing_out

    def connect(self) -> None:
        pass

    def close(self) -> None:
        pass

    def run(self, command, *, env=None, timeout=None, cancel=None, display=None) -> ExecutionResult:
        self.log.append((display or command, dict(env or {})))
        if any(command.startswith(prefix) for prefix in self.timing_out):
            raise ExecutionTimeout(display or command, timeout or 0)
        failed = any(command.startswith(prefix) for prefix in self.failing)
        return ExecutionResult(
            invocation=display or command,
            exit_code=1 if failed else 0,
            stdout="",
            stderr="simulated failure" if failed else "",
        )


def make_target(address: str, **kwargs) -> Target:
    credential = SSHCredentials(username="centos", key_path="/keys/id_ed25519")
    return Target(address=address, credential=credential, **kwargs)


def make_fleet_executor(
    hosts: Dict[str, FakeHost],
    *,
    local_log: Optional[List[Tuple[str, Dict[str, str]]]] = None,
    local_failing: Tuple[str, ...] = (),
    local_timing_out: Tuple[str, ...] = (),
    cancel_token: Optional[CancelToken] = None,
) -> CommandExecutor:
    """An executor whose remote targets are ``hosts`` and whose local commands are scripted."""
    local_log = local_log if local_log is not None else []
    return CommandExecutor(
        default_timeout=5,
        cancel_token=cancel_token,
        ssh_factory=lambda target: FakeHostSession(hosts[target.address], target.address),
        local_factory=lambda: ScriptedLocalSession(local_log, local_failing, local_timing_out),
    )
