"""Data models shared by the pipeline components."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Callable, FrozenSet, List, Optional, Tuple

if TYPE_CHECKING:
    from .ssh.credentials import SSHCredentials

LOCAL_ADDRESS = "local"


@dataclass(frozen=True)
class Target:
    """One host to provision. Immutable once the pipeline starts."""

    address: str
    credential: Optional[SSHCredentials] = field(default=None, repr=False)
    labels: FrozenSet[str] = frozenset()
    become: bool = False

    @property
    def is_local(self) -> bool:
        return self.address == LOCAL_ADDRESS

    def __str__(self) -> str:
        return self.address


@dataclass(frozen=True)
class ArtifactRef:
    """Image coordinates, resolved once per run."""

    repository: str
    tag: str

    @property
    def reference(self) -> str:
        return f"{self.repository}:{self.tag}"

    def __str__(self) -> str:
        return self.reference


@dataclass(frozen=True)
class PortBinding:
    host_port: int
    container_port: int

    @classmethod
    def parse(cls, value) -> "PortBinding":
        """Accept ``"5000:5000"``, ``[5000, 5000]`` or a bare port ``5000``."""
        if isinstance(value, PortBinding):
            return value
        if isinstance(value, int):
            return cls(value, value)
        if isinstance(value, str):
            parts = value.split(":")
        else:
            parts = list(value)
        if len(parts) == 1:
            parts = [parts[0], parts[0]]
        if len(parts) != 2:
            raise ValueError(f"Invalid port binding: {value!r}")
        host_port, container_port = (int(p) for p in parts)
        for port in (host_port, container_port):
            if not 0 < port < 65536:
                raise ValueError(f"Port out of range in binding {value!r}")
        return cls(host_port, container_port)

    def __str__(self) -> str:
        return f"{self.host_port}:{self.container_port}"


@dataclass(frozen=True)
class ContainerSpec:
    """Desired running state of the application container on one target."""

    name: str
    image: ArtifactRef
    port_bindings: Tuple[PortBinding, ...] = ()


@dataclass
class ExecutionResult:
    """Outcome of one executor call.

    ``invocation`` is the command as it may be logged: secret values have
    already been masked out of it.
    """

    invocation: str
    exit_code: int
    stdout: str
    stderr: str

    @property
    def succeeded(self) -> bool:
        return self.exit_code == 0

    def describe_failure(self) -> str:
        detail = self.stderr or self.stdout or "no output"
        return f"`{self.invocation}` exited {self.exit_code}: {detail}"


class HostState(Enum):
    """Reconciliation state of a single target."""

    UNCHECKED = "unchecked"
    PREREQ_VERIFIED = "prereq_verified"
    IMAGE_FETCHED = "image_fetched"
    CONTAINER_RUNNING = "container_running"
    FAILED = "failed"


@dataclass(frozen=True)
class Stage:
    """A named pipeline step.

    Required stages abort the run on failure; a non-required stage is a
    cleanup stage and runs once after the required stages, whatever happened.
    """

    name: str
    action: Callable[[], object]
    required: bool = True


class StageStatus(Enum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class StageOutcome:
    name: str
    required: bool
    status: StageStatus = StageStatus.PENDING
    error: Optional[BaseException] = None
    duration: float = 0.0

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "required": self.required,
            "status": self.status.value,
            "error_kind": type(self.error).__name__ if self.error else None,
            "error": str(self.error) if self.error else None,
            "duration_seconds": round(self.duration, 3),
        }


@dataclass
class PipelineResult:
    """What happened during one pipeline run."""

    stages: List[StageOutcome] = field(default_factory=list)
    failed_stage: Optional[str] = None
    error: Optional[BaseException] = None
    cleanup_succeeded: bool = True
    cleanup_error: Optional[BaseException] = None

    @property
    def succeeded(self) -> bool:
        return self.failed_stage is None

    @property
    def exit_code(self) -> int:
        # Cleanup failures are reported but never change the exit code.
        return 0 if self.succeeded else 1

    def outcome(self, name: str) -> Optional[StageOutcome]:
        for stage in self.stages:
            if stage.name == name:
                return stage
        return None
