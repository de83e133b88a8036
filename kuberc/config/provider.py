"""Configuration provider following Black Box Design principles."""
import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, Optional, Protocol

import yaml

from kuberc.errors import PreconditionError


@dataclass(frozen=True)
class KubeSettings:
    """Kubernetes API access."""
    kubeconfig: Optional[str] = None
    context: Optional[str] = None


@dataclass(frozen=True)
class ClusterSettings:
    """Redis Cluster pods."""
    namespace: str = "default"
    container: Optional[str] = None
    redis_port: int = 6379


@dataclass(frozen=True)
class SentinelSettings:
    """Redis Sentinel pods and the Redis pods they monitor."""
    namespace: str = "default"
    container: Optional[str] = None
    sentinel_port: int = 26379
    redis_port: int = 6379
    redis_container: Optional[str] = None
    local_port: int = 0  # 0 picks a free local port


@dataclass(frozen=True)
class ForwardSettings:
    """Port-forward sessions."""
    ready_timeout: float = 30.0
    bind_address: str = "127.0.0.1"


@dataclass(frozen=True)
class KubercConfig:
    """Complete configuration, passed explicitly to every operation."""
    kube: KubeSettings = field(default_factory=KubeSettings)
    cluster: ClusterSettings = field(default_factory=ClusterSettings)
    sentinel: SentinelSettings = field(default_factory=SentinelSettings)
    forward: ForwardSettings = field(default_factory=ForwardSettings)
    log_level: str = "INFO"


class ConfigProvider(Protocol):
    """Protocol for configuration providers."""

    def get_config(self) -> KubercConfig:
        """Get the complete configuration."""
        ...


def _env_number(name: str, default: str, cast=int):
    raw = os.getenv(name, default)
    try:
        return cast(raw)
    except ValueError as e:
        raise PreconditionError(f"Invalid value {raw!r} for {name}") from e


class EnvConfigProvider:
    """Environment-based configuration provider."""

    def get_config(self) -> KubercConfig:
        """Get configuration from environment variables."""
        namespace = os.getenv("KUBERC_NAMESPACE", "default")
        redis_port = _env_number("KUBERC_REDIS_PORT", "6379")

        return KubercConfig(
            kube=KubeSettings(
                kubeconfig=os.getenv("KUBECONFIG") or None,
                context=os.getenv("KUBERC_CONTEXT") or None,
            ),
            cluster=ClusterSettings(
                namespace=namespace,
                container=os.getenv("KUBERC_CONTAINER") or None,
                redis_port=redis_port,
            ),
            sentinel=SentinelSettings(
                namespace=namespace,
                container=os.getenv("KUBERC_SENTINEL_CONTAINER") or None,
                sentinel_port=_env_number("KUBERC_SENTINEL_PORT", "26379"),
                redis_port=redis_port,
                redis_container=os.getenv("KUBERC_REDIS_CONTAINER") or None,
                local_port=_env_number("KUBERC_SENTINEL_LOCAL_PORT", "0"),
            ),
            forward=ForwardSettings(
                ready_timeout=_env_number("KUBERC_READY_TIMEOUT", "30", float),
                bind_address=os.getenv("KUBERC_BIND_ADDRESS", "127.0.0.1"),
            ),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
        )


class FileConfigProvider:
    """YAML file overlay on top of another provider.

    The file mirrors the dataclass layout::

        cluster:
          namespace: redis
          redis_port: 7000
        forward:
          ready_timeout: 10
    """

    SECTIONS = ("kube", "cluster", "sentinel", "forward")

    def __init__(self, path: Optional[str] = None, base: Optional[ConfigProvider] = None):
        self.path = Path(
            os.path.expanduser(path or os.getenv("KUBERC_CONFIG", "~/.kuberc.yaml"))
        )
        self.base = base or EnvConfigProvider()

    def _load(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}
        with open(self.path, "r") as f:
            try:
                data = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise PreconditionError(f"Invalid YAML in config file {self.path}: {e}") from e
        if not isinstance(data, dict):
            raise PreconditionError(f"Config file {self.path} must contain a mapping")
        return data

    def get_config(self) -> KubercConfig:
        """Get the base configuration with the file's values applied on top."""
        config = self.base.get_config()
        data = self._load()

        overrides = {}
        for section in self.SECTIONS:
            values = data.get(section)
            if not values:
                continue
            if not isinstance(values, dict):
                raise PreconditionError(f"Config section '{section}' must be a mapping")
            try:
                overrides[section] = replace(getattr(config, section), **values)
            except TypeError as e:
                raise PreconditionError(f"Unknown key in config section '{section}': {e}") from e

        if "log_level" in data:
            overrides["log_level"] = str(data["log_level"])

        return replace(config, **overrides)
