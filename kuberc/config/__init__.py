"""
Config Module - Black Box Interface

Purpose: Application configuration management
Interface: load_config(), KubercConfig and its settings sections
Hidden: Config sources (environment, YAML file), parsing

The resulting KubercConfig is threaded explicitly through every operation.
"""

from dataclasses import replace
from typing import Any, Dict, Optional

from .provider import (
    ClusterSettings,
    ConfigProvider,
    EnvConfigProvider,
    FileConfigProvider,
    ForwardSettings,
    KubeSettings,
    KubercConfig,
    SentinelSettings,
)


def load_config(
    path: Optional[str] = None, **sections: Optional[Dict[str, Any]]
) -> KubercConfig:
    """
    Load configuration from environment and YAML file, then apply overrides.

    Args:
        path: Optional YAML file path (defaults to $KUBERC_CONFIG or ~/.kuberc.yaml)
        **sections: Per-section overrides such as cluster={"namespace": "redis"};
            None values are ignored so unset command line flags keep the
            file and environment values

    Returns:
        Complete configuration
    """
    config = FileConfigProvider(path).get_config()
    for section, values in sections.items():
        if section not in FileConfigProvider.SECTIONS:
            raise ValueError(f"Unknown config section '{section}'")
        overrides = {k: v for k, v in (values or {}).items() if v is not None}
        if overrides:
            config = replace(config, **{section: replace(getattr(config, section), **overrides)})
    return config


__all__ = [
    "ClusterSettings",
    "ConfigProvider",
    "EnvConfigProvider",
    "FileConfigProvider",
    "ForwardSettings",
    "KubeSettings",
    "KubercConfig",
    "SentinelSettings",
    "load_config",
]
