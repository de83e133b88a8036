"""Helpers shared by the topology parsers."""

import logging

from kuberc.errors import CorrelationError, NotFoundError
from kuberc.modules.registry import PodRegistry, Target

logger = logging.getLogger("kuberc.topology")


def correlate(registry: PodRegistry, namespace: str, ip: str) -> Target:
    """
    Find the pod behind a Redis node IP.

    Raises:
        CorrelationError: No pod in the namespace owns the IP
    """
    try:
        return registry.lookup_by_ip(namespace, ip)
    except NotFoundError as e:
        logger.error(f"can't find pod for ip {ip} in namespace {namespace}")
        raise CorrelationError(ip, namespace) from e


def to_str(value) -> str:
    """Decode a reply element that may arrive as bytes."""
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return str(value)
