"""
Pod Registry for kuberc.

Resolves pods by name and by IP through the Kubernetes API.
"""

import logging
import threading
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from kubernetes import client, config
from kubernetes.client.rest import ApiException
from kubernetes.config.config_exception import ConfigException

from kuberc.config import KubeSettings
from kuberc.errors import (
    ContainerNotFoundError,
    NotFoundError,
    PreconditionError,
    TunnelError,
)

logger = logging.getLogger("kuberc.registry")


@dataclass(frozen=True)
class Target:
    """A resolved pod, optionally narrowed to one of its containers."""

    namespace: str
    name: str
    container: str
    pod_ip: str
    phase: str
    node_name: str = ""
    containers: Tuple[str, ...] = ()

    @property
    def running(self) -> bool:
        return self.phase == "Running"

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"

    @classmethod
    def from_pod(cls, pod, container: Optional[str] = None) -> "Target":
        """
        Build a Target from a V1Pod.

        Args:
            pod: kubernetes.client.V1Pod
            container: Container name, defaults to the first container

        Raises:
            ContainerNotFoundError: If container is given but not in the pod spec
        """
        names = tuple(c.name for c in (pod.spec.containers or []))
        if container:
            if container not in names:
                raise ContainerNotFoundError(container, pod.metadata.name)
        else:
            container = names[0] if names else ""

        status = pod.status
        return cls(
            namespace=pod.metadata.namespace,
            name=pod.metadata.name,
            container=container,
            pod_ip=(status.pod_ip if status else None) or "",
            phase=(status.phase if status else None) or "Unknown",
            node_name=pod.spec.node_name or "",
            containers=names,
        )


def load_core_api(settings: KubeSettings) -> client.CoreV1Api:
    """
    Build a CoreV1Api from an explicit kubeconfig, or from in-cluster config.

    Raises:
        PreconditionError: If no usable configuration is found
    """
    try:
        config.load_kube_config(config_file=settings.kubeconfig, context=settings.context)
        logger.debug(f"Loaded kubeconfig {settings.kubeconfig or '(default)'}")
    except (ConfigException, FileNotFoundError) as e:
        if settings.kubeconfig:
            raise PreconditionError(f"can't load kubeconfig {settings.kubeconfig}: {e}") from e
        try:
            config.load_incluster_config()
            logger.debug("Loaded in-cluster config")
        except ConfigException:
            raise PreconditionError("missing kubeconfig") from e
    return client.CoreV1Api()


class PodRegistry:
    """
    Pod lookups for one session.

    The IP cache is built with a single bulk list per namespace, at most once
    per registry, and never refreshed. Create a new registry to observe
    membership changes.
    """

    def __init__(self, core_api: client.CoreV1Api, namespace: str = "default"):
        """
        Initialize pod registry.

        Args:
            core_api: Kubernetes CoreV1Api
            namespace: Default namespace for resolve()
        """
        self.api = core_api
        self.namespace = namespace
        self._lock = threading.Lock()
        self._ip_cache: Dict[str, Dict[str, Target]] = {}

    def resolve(
        self, name: str, container: Optional[str] = None, namespace: Optional[str] = None
    ) -> Target:
        """
        Resolve a pod by name.

        Raises:
            NotFoundError: The pod does not exist
            ContainerNotFoundError: The container is not part of the pod
            TunnelError: Any other API failure
        """
        namespace = namespace or self.namespace
        try:
            pod = self.api.read_namespaced_pod(name=name, namespace=namespace)
        except ApiException as e:
            if e.status == 404:
                raise NotFoundError(f"pod {namespace}/{name} not found") from e
            raise TunnelError(f"failed to get pod {namespace}/{name}: {e.reason}") from e

        target = Target.from_pod(pod, container)
        logger.debug(f"Resolved {target} (ip={target.pod_ip}, phase={target.phase})")
        return target

    def _load_namespace(self, namespace: str) -> Dict[str, Target]:
        with self._lock:
            cached = self._ip_cache.get(namespace)
            if cached is not None:
                return cached

            try:
                pods = self.api.list_namespaced_pod(namespace=namespace)
            except ApiException as e:
                raise TunnelError(f"failed to list pods in {namespace}: {e.reason}") from e

            by_ip: Dict[str, Target] = {}
            for pod in pods.items:
                if not pod.status or not pod.status.pod_ip:
                    continue
                by_ip[pod.status.pod_ip] = Target.from_pod(pod)

            logger.debug(f"Cached {len(by_ip)} pod IPs in namespace {namespace}")
            self._ip_cache[namespace] = by_ip
            return by_ip

    def lookup_by_ip(self, namespace: str, ip: str) -> Target:
        """
        Find the pod owning an IP.

        Raises:
            NotFoundError: No pod in the namespace has this IP
        """
        target = self._load_namespace(namespace).get(ip)
        if target is None:
            raise NotFoundError(f"can't find pod with ip {ip} in namespace {namespace}")
        return target

    def pods(self, namespace: Optional[str] = None) -> List[Target]:
        """All cached pods with an IP in the namespace, sorted by name."""
        by_ip = self._load_namespace(namespace or self.namespace)
        return sorted(by_ip.values(), key=lambda t: t.name)
