"""
Configuration loading and validation for sparkcluster.
"""
import os
import shlex
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, Field, field_validator

from ..utils.exceptions import ConfigError

DEFAULT_IMAGE = "vllm-node"
DEFAULT_CONTAINER_NAME = "vllm_node"
EXTRA_DOCKER_ARGS_ENV = "VLLMSPARK_EXTRA_DOCKER_ARGS"


def default_docker_args() -> List[str]:
    """Docker arguments passed to every container launch."""
    cache_dir = Path.home() / ".cache" / "huggingface"
    return [
        "-e", "NCCL_DEBUG=INFO",
        "-e", "NCCL_IGNORE_CPU_AFFINITY=1",
        "-v", f"{cache_dir}:/root/.cache/huggingface",
    ]


def extra_docker_args_from_env() -> List[str]:
    """Additional docker arguments from VLLMSPARK_EXTRA_DOCKER_ARGS."""
    value = os.environ.get(EXTRA_DOCKER_ARGS_ENV, "")
    if not value.strip():
        return []
    try:
        return shlex.split(value)
    except ValueError as e:
        raise ConfigError(f"Invalid {EXTRA_DOCKER_ARGS_ENV}: {e}")


class LifecycleAction(str, Enum):
    """Action performed against the cluster."""
    START = "start"
    STOP = "stop"
    STATUS = "status"
    EXEC = "exec"


class DiscoveryStrategy(str, Enum):
    """How peers are found when no node list is given."""
    PROBE = "probe"
    MDNS = "mdns"


class DiscoveryConfig(BaseModel):
    """Peer discovery settings."""
    strategy: DiscoveryStrategy = DiscoveryStrategy.PROBE
    ssh_port: int = Field(default=22, ge=1, le=65535)
    probe_timeout: float = Field(default=1.0, gt=0)
    max_concurrent_probes: int = Field(default=256, ge=1)
    max_scan_hosts: int = Field(default=65534, ge=1)
    service_type: str = "_ssh._tcp"


class SSHConfig(BaseModel):
    """Remote command execution settings."""
    executable: str = "ssh"
    connect_timeout: int = Field(default=5, ge=1)
    batch_mode: bool = True
    strict_host_key_checking: bool = False
    preflight_timeout: float = Field(default=10.0, gt=0)
    command_timeout: Optional[float] = Field(default=120.0, gt=0)


class ReadinessConfig(BaseModel):
    """Readiness polling settings."""
    attempts: int = Field(default=30, ge=1)
    interval_seconds: float = Field(default=2.0, ge=0)
    grace_seconds: float = Field(default=5.0, ge=0)
    status_command: List[str] = Field(default_factory=lambda: ["ray", "status"])


class LoggingConfig(BaseModel):
    """Logging configuration."""
    level: str = "INFO"
    file: Optional[str] = None
    console: bool = True


class ClusterConfig(BaseModel):
    """Main configuration object."""
    image: str = DEFAULT_IMAGE
    container_name: str = DEFAULT_CONTAINER_NAME
    nodes: List[str] = Field(default_factory=list)
    eth_if: Optional[str] = None
    ib_if: Optional[str] = None
    docker_args: List[str] = Field(default_factory=default_docker_args)
    extra_docker_args: List[str] = Field(default_factory=list)
    entrypoint: List[str] = Field(default_factory=lambda: ["./run-cluster-node.sh"])
    exec_reuse_running: bool = False
    discovery: DiscoveryConfig = Field(default_factory=DiscoveryConfig)
    ssh: SSHConfig = Field(default_factory=SSHConfig)
    readiness: ReadinessConfig = Field(default_factory=ReadinessConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @field_validator("nodes", mode="before")
    @classmethod
    def split_nodes(cls, v):
        """Accept either a list or a comma-separated string of node IPs."""
        if v is None:
            return []
        if isinstance(v, str):
            v = v.split(",")
        return parse_node_list(v)

    @field_validator("image", "container_name")
    @classmethod
    def validate_not_empty(cls, v):
        if not v or not v.strip():
            raise ValueError("must not be empty")
        return v.strip()

    @field_validator("eth_if", "ib_if")
    @classmethod
    def blank_is_unset(cls, v):
        """Treat an empty interface override as not given."""
        if v is not None and not v.strip():
            return None
        return v

    def launch_docker_args(self) -> List[str]:
        """Docker arguments for a container launch, extras last."""
        return list(self.docker_args) + list(self.extra_docker_args)

    def with_overrides(self, **overrides: Any) -> "ClusterConfig":
        """
        Return a copy with the given top-level fields replaced.

        None values are ignored so unset command-line flags keep the
        configured value.
        """
        data = self.model_dump()
        data.update({k: v for k, v in overrides.items() if v is not None})
        try:
            return ClusterConfig(**data)
        except Exception as e:
            raise ConfigError(f"Invalid configuration: {e}")


def parse_node_list(values) -> List[str]:
    """Strip entries, drop empty ones and remove duplicates keeping order."""
    nodes: List[str] = []
    for value in values:
        node = str(value).strip()
        if node and node not in nodes:
            nodes.append(node)
    return nodes


def load_yaml_file(file_path: Path) -> Dict[str, Any]:
    """
    Load and parse a YAML file.

    Args:
        file_path: Path to YAML file

    Returns:
        Parsed YAML content as dictionary

    Raises:
        ConfigError: If file doesn't exist or is invalid
    """
    if not file_path.exists():
        raise ConfigError(f"Configuration file not found: {file_path}")

    try:
        with open(file_path, "r") as f:
            data = yaml.safe_load(f)
            if data is None:
                return {}
            if not isinstance(data, dict):
                raise ConfigError(f"Expected a mapping at the top of {file_path}")
            return data
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {file_path}: {e}")
    except OSError as e:
        raise ConfigError(f"Error reading {file_path}: {e}")


def load_config(config_path: Optional[Path] = None) -> ClusterConfig:
    """
    Load sparkcluster configuration.

    Without a path the built-in defaults are used. Extra docker arguments
    from VLLMSPARK_EXTRA_DOCKER_ARGS are appended to any configured ones.

    Args:
        config_path: Optional path to a YAML config file

    Returns:
        Validated ClusterConfig object

    Raises:
        ConfigError: If configuration is invalid
    """
    data = load_yaml_file(config_path) if config_path is not None else {}

    try:
        config = ClusterConfig(**data)
    except Exception as e:
        raise ConfigError(f"Invalid configuration: {e}")

    env_args = extra_docker_args_from_env()
    if env_args:
        config = config.with_overrides(
            extra_docker_args=config.extra_docker_args + env_args
        )
    return config
