"""
Registry Module - Black Box Interface

Purpose: Resolve pods (and containers) by name or by IP
Interface: PodRegistry.resolve(), PodRegistry.lookup_by_ip(), load_core_api()
Hidden: Kubernetes API calls, per-namespace IP cache

The IP cache is built once per registry and never invalidated.
"""

from .registry import PodRegistry, Target, load_core_api

__all__ = ["PodRegistry", "Target", "load_core_api"]
