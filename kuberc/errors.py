"""
Error taxonomy shared by all kuberc modules.

Every error is returned to the immediate caller; nothing here is retried.
"""

from typing import Optional


class KubercError(Exception):
    """Base class for all kuberc errors."""


class ResolutionError(KubercError):
    """A pod or container could not be resolved."""


class NotFoundError(ResolutionError):
    """The named pod (or the pod owning an IP) does not exist."""


class ContainerNotFoundError(ResolutionError):
    """The pod exists but has no container with the requested name."""

    def __init__(self, container: str, pod: str):
        super().__init__(f"can't find container {container} in pod {pod}")
        self.container = container
        self.pod = pod


class PreconditionError(KubercError):
    """An operation was rejected before touching the cluster."""


class TunnelError(KubercError):
    """Stream negotiation or mid-stream I/O failed.

    ``output`` holds whatever was captured before the failure, so callers can
    show it for diagnostics.
    """

    def __init__(self, message: str, output: Optional[str] = None):
        super().__init__(message)
        self.output = output


class ExecError(TunnelError):
    """A command run through the exec tunnel failed."""


class FormatError(KubercError):
    """A protocol line or token stream could not be parsed."""


class CorrelationError(KubercError):
    """A Redis node IP has no matching pod in the namespace."""

    def __init__(self, ip: str, namespace: str):
        super().__init__(f"can't find pod for ip {ip} in namespace {namespace}")
        self.ip = ip
        self.namespace = namespace
