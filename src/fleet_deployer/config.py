"""Configuration loading utilities for fleet-deployer."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv

from .errors import ConfigError
from .models import LOCAL_ADDRESS, PortBinding, Target
from .ssh.credentials import SSHCredentials

_DEFAULT_CONFIG_PATH = Path("config/default_config.json")

# Top-level shorthand keys and the section they belong to.
_FLAT_KEYS = {
    "repository": "registry",
    "tag": "registry",
    "container_name": "container",
    "port_bindings": "container",
}


@dataclass
class RegistryConfig:
    """Where the image is published."""

    repository: str = ""
    tag: Optional[str] = None          # None: short commit SHA of the source, else "latest"
    server: Optional[str] = None       # None: the engine's default registry
    username: Optional[str] = None
    password: Optional[str] = None


@dataclass
class TargetConfig:
    """One host entry from ``targets[]``."""

    address: str = ""
    port: int = 22
    username: Optional[str] = None
    key_path: Optional[str] = None
    password: Optional[str] = None
    password_env: Optional[str] = None  # name of an env var holding the password
    become: bool = False
    labels: List[str] = field(default_factory=list)


@dataclass
class ContainerConfig:
    container_name: str = "app"
    port_bindings: List[Any] = field(default_factory=list)


@dataclass
class RuntimeConfig:
    """How to detect and install the container runtime on a host.

    Defaults install Docker CE on yum-based hosts.
    """

    name: str = "docker"
    probe_command: str = "docker --version"
    install_command: str = "yum install -y {packages}"
    prerequisite_packages: List[str] = field(
        default_factory=lambda: ["yum-utils", "device-mapper-persistent-data", "lvm2"]
    )
    package_source_url: Optional[str] = "https://download.docker.com/linux/centos/docker-ce.repo"
    package_source_path: str = "/etc/yum.repos.d/docker-ce.repo"
    package: str = "docker-ce"
    service: Optional[str] = "docker"
    ensure_service_running: bool = True


@dataclass
class SourceConfig:
    repo_url: Optional[str] = None     # None: build from build_context as-is
    branch: str = "main"
    build_context: str = "."           # relative to the checkout when repo_url is set
    token: Optional[str] = None


@dataclass
class PipelineConfig:
    max_workers: int = 4
    command_timeout: Optional[float] = 600
    build_timeout: Optional[float] = 1800
    run_timeout: Optional[float] = None
    remove_local_image: bool = False
    log_dir: str = "deploy_logs"
    workspace_root: str = ".fleet-deployer/workspace"


def _section(cls, payload: Optional[Dict[str, Any]]):
    payload = payload or {}
    # Keys starting with "_" are comments.
    payload = {k: v for k, v in payload.items() if not k.startswith("_")}
    known = {f.name for f in fields(cls)}
    unknown = sorted(set(payload) - known)
    if unknown:
        raise ConfigError(f"Unknown {cls.__name__} option(s): {', '.join(unknown)}")
    return cls(**payload)


@dataclass
class AppConfig:
    """Top-level run configuration."""

    registry: RegistryConfig = field(default_factory=RegistryConfig)
    targets: List[TargetConfig] = field(default_factory=list)
    container: ContainerConfig = field(default_factory=ContainerConfig)
    runtime: RuntimeConfig = field(default_factory=RuntimeConfig)
    source: SourceConfig = field(default_factory=SourceConfig)
    pipeline: PipelineConfig = field(default_factory=PipelineConfig)

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "AppConfig":
        payload = {k: v for k, v in payload.items() if not k.startswith("_")}
        sections: Dict[str, Dict[str, Any]] = {
            name: dict(payload.pop(name, None) or {})
            for name in ("registry", "container", "runtime", "source", "pipeline")
        }
        for key, section in _FLAT_KEYS.items():
            if key in payload:
                sections[section][key] = payload.pop(key)

        targets_payload = payload.pop("targets", None) or []
        if payload:
            raise ConfigError(f"Unknown configuration key(s): {', '.join(sorted(payload))}")

        targets = []
        for entry in targets_payload:
            if isinstance(entry, str):
                entry = {"address": entry}
            targets.append(_section(TargetConfig, entry))

        return cls(
            registry=_section(RegistryConfig, sections["registry"]),
            targets=targets,
            container=_section(ContainerConfig, sections["container"]),
            runtime=_section(RuntimeConfig, sections["runtime"]),
            source=_section(SourceConfig, sections["source"]),
            pipeline=_section(PipelineConfig, sections["pipeline"]),
        )

    def validate(self) -> None:
        if not self.registry.repository:
            raise ConfigError("registry.repository is required")
        if not self.targets:
            raise ConfigError("At least one target is required")
        if not self.container.container_name:
            raise ConfigError("container.container_name is required")
        if self.pipeline.max_workers < 1:
            raise ConfigError("pipeline.max_workers must be at least 1")
        if bool(self.registry.username) != bool(self.registry.password):
            raise ConfigError("registry.username and registry.password must be set together")

        seen = set()
        for target in self.targets:
            if not target.address:
                raise ConfigError("Every target needs an address")
            if target.address in seen:
                raise ConfigError(f"Duplicate target address: {target.address}")
            seen.add(target.address)
        self.port_bindings()
        self.build_targets()

    def port_bindings(self) -> tuple:
        try:
            return tuple(PortBinding.parse(value) for value in self.container.port_bindings)
        except (TypeError, ValueError) as exc:
            raise ConfigError(str(exc)) from exc

    def build_targets(self) -> List[Target]:
        """Materialize immutable ``Target`` objects, credentials included."""
        return [self._build_target(entry) for entry in self.targets]

    @staticmethod
    def _build_target(entry: TargetConfig) -> Target:
        labels = frozenset(entry.labels)
        if entry.address == LOCAL_ADDRESS:
            return Target(address=entry.address, labels=labels, become=entry.become)

        password = entry.password
        if entry.password_env:
            password = os.getenv(entry.password_env) or password
        key_path = entry.key_path or os.getenv("FLEET_DEPLOYER_SSH_KEY_PATH")
        credential = SSHCredentials(
            username=entry.username or os.getenv("FLEET_DEPLOYER_SSH_USERNAME") or "root",
            port=entry.port,
            auth_method="key" if key_path else "password",
            key_path=key_path,
            password=password,
        )
        try:
            credential.validate()
        except ValueError as exc:
            raise ConfigError(f"Target {entry.address}: {exc}") from exc
        return Target(address=entry.address, credential=credential, labels=labels, become=entry.become)


def load_config(path: Optional[str] = None) -> AppConfig:
    """Load configuration from `path` or the default location.

    Environment variables (higher priority than config file, ``.env`` honoured):
    - FLEET_DEPLOYER_TAG: image tag
    - FLEET_DEPLOYER_REGISTRY_USERNAME / FLEET_DEPLOYER_REGISTRY_PASSWORD: registry login
    - FLEET_DEPLOYER_SOURCE_TOKEN: token for fetching the source repository
    - FLEET_DEPLOYER_SSH_KEY_PATH: private key for targets without one
    - FLEET_DEPLOYER_SSH_USERNAME: SSH user for targets without one
    """
    load_dotenv()

    candidate_paths = []
    if path:
        candidate_paths.append(Path(path))
    candidate_paths.append(_DEFAULT_CONFIG_PATH)

    for candidate in candidate_paths:
        if candidate.is_file():
            with candidate.open("r", encoding="utf-8") as handle:
                try:
                    data = json.load(handle)
                except json.JSONDecodeError as exc:
                    raise ConfigError(f"{candidate}: invalid JSON ({exc})") from exc
            config = AppConfig.from_dict(data)
            _apply_env_overrides(config)
            return config

    raise FileNotFoundError(
        f"Could not find configuration file. Looked in: {', '.join(str(p) for p in candidate_paths)}"
    )


def _apply_env_overrides(config: AppConfig) -> None:
    env_tag = os.getenv("FLEET_DEPLOYER_TAG")
    if env_tag:
        config.registry.tag = env_tag

    env_username = os.getenv("FLEET_DEPLOYER_REGISTRY_USERNAME")
    if env_username:
        config.registry.username = env_username

    env_password = os.getenv("FLEET_DEPLOYER_REGISTRY_PASSWORD")
    if env_password:
        config.registry.password = env_password

    env_token = os.getenv("FLEET_DEPLOYER_SOURCE_TOKEN")
    if env_token:
        config.source.token = env_token
