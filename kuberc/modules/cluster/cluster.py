"""
Redis Cluster operations for kuberc.

Every operation builds a redis-cli command line and runs it inside a pod
through the command tunnel.
"""

import logging
import shlex
from dataclasses import dataclass, field, replace
from typing import Dict, List, Optional, Sequence

from kuberc.config import ClusterSettings
from kuberc.errors import PreconditionError
from kuberc.modules.registry import PodRegistry, Target
from kuberc.modules.topology import (
    ClusterNode,
    SlotRange,
    correlate_nodes,
    parse_nodes,
    parse_slots,
)
from kuberc.modules.tunnel import CommandTunnel

logger = logging.getLogger("kuberc.cluster")

LOCAL_HOST = "127.0.0.1"
MIN_REBALANCE_TIMEOUT = 2000


@dataclass
class RebalanceOptions:
    """Flags for redis-cli --cluster rebalance."""

    weights: Dict[str, str] = field(default_factory=dict)  # pod name -> weight
    use_empty_masters: bool = False
    timeout: int = 60000  # ms per migrate batch
    simulate: bool = False
    pipeline: int = 10
    threshold: int = 2
    replace: bool = False

    def validate(self) -> None:
        """
        Raises:
            PreconditionError: Unsafe timeout, or non-positive pipeline/threshold
        """
        if self.timeout <= MIN_REBALANCE_TIMEOUT:
            raise PreconditionError(f"timeout must > {MIN_REBALANCE_TIMEOUT} ms for safety.")
        if self.pipeline <= 0:
            raise PreconditionError("pipeline size must > 0")
        if self.threshold <= 0:
            raise PreconditionError("threshold should > 0")

    @staticmethod
    def parse_weights(line: str) -> Dict[str, str]:
        """
        Parse "pod-0=1,pod-1=2" into a weight mapping.

        Raises:
            PreconditionError: An entry is not pod=weight
        """
        weights = {}
        if not line:
            return weights
        for item in line.split(","):
            pod, sep, weight = item.partition("=")
            if not sep or not pod or not weight or "=" in weight:
                raise PreconditionError(f"wrong weight flag {line}")
            weights[pod.strip()] = weight.strip()
        return weights


class RedisPod:
    """A Redis Cluster node running in a pod."""

    def __init__(
        self, tunnel: CommandTunnel, registry: PodRegistry, target: Target, port: int = 6379
    ):
        """
        Initialize redis pod.

        Args:
            tunnel: Command tunnel used for every redis-cli call
            registry: Pod registry used to correlate cluster members
            target: Resolved pod (and container) running redis
            port: Redis port inside the pod
        """
        self.tunnel = tunnel
        self.registry = registry
        self.target = target
        self.port = port
        self._node_id: Optional[str] = None

    @classmethod
    def resolve(
        cls,
        tunnel: CommandTunnel,
        registry: PodRegistry,
        name: str,
        settings: ClusterSettings,
    ) -> "RedisPod":
        """Resolve a pod by name using the cluster settings."""
        target = registry.resolve(name, settings.container, settings.namespace)
        return cls(tunnel, registry, target, settings.redis_port)

    @property
    def name(self) -> str:
        return self.target.name

    @property
    def ip(self) -> str:
        return self.target.pod_ip

    @property
    def address(self) -> str:
        return f"{self.ip}:{self.port}"

    def __repr__(self) -> str:
        return f"RedisPod({self.target}, {self.address})"

    def peer(self, target: Target) -> "RedisPod":
        """A RedisPod for another member, using this pod's container name when present."""
        if self.target.container in target.containers:
            target = replace(target, container=self.target.container)
        return RedisPod(self.tunnel, self.registry, target, self.port)

    # redis-cli plumbing

    def _execute(self, cmd: str, stream_stdout: bool = False, stream_stdin: bool = False) -> str:
        logger.debug(f"{self.name}: {cmd}")
        return self.tunnel.execute(self.target, cmd, stream_stdout, stream_stdin)

    def redis_cli(self, cmd: str, raw: bool = False) -> str:
        """Run a command against the local redis instance of this pod."""
        flags = "-c --raw" if raw else "-c"
        return self._execute(f"redis-cli {flags} -h {LOCAL_HOST} -p {self.port} {cmd}")

    def redis_cli_cluster(
        self, cmd: str, stream_stdout: bool = False, stream_stdin: bool = False
    ) -> str:
        """Run redis-cli --cluster <cmd> in this pod."""
        return self._execute(f"redis-cli --cluster {cmd}", stream_stdout, stream_stdin)

    # Single node commands

    def ping(self) -> str:
        return self.redis_cli("ping")

    def call(self, *args: str) -> str:
        return self.redis_cli(" ".join(shlex.quote(a) for a in args))

    def config_get(self, key: str) -> str:
        return self.redis_cli(f"config get {shlex.quote(key)}")

    def config_set(self, key: str, value: str) -> str:
        return self.redis_cli(f"config set {shlex.quote(key)} {shlex.quote(value)}")

    def cluster_info(self) -> str:
        return self.redis_cli("cluster info")

    def node_id(self) -> str:
        """Cluster node id of this pod, cached after the first call."""
        if self._node_id is None:
            self._node_id = self.redis_cli("cluster myid", raw=True).strip()
        return self._node_id

    def role(self) -> str:
        result = self.redis_cli("role", raw=True)
        lines = result.splitlines()
        return lines[0].strip() if lines else ""

    def is_master(self) -> bool:
        return self.role() == "master"

    # Cluster commands

    def cluster_nodes(self) -> List[ClusterNode]:
        """
        Cluster members correlated to their pods.

        Raises:
            FormatError: A line could not be parsed
            CorrelationError: A member IP has no pod
        """
        nodes = parse_nodes(self.redis_cli("cluster nodes"))
        return correlate_nodes(nodes, self.registry, self.target.namespace)

    def cluster_slots(self) -> List[SlotRange]:
        """
        Slot ranges with their master and slaves.

        Raises:
            FormatError: The token stream is malformed or ranges overlap
            CorrelationError: A member IP has no pod
        """
        result = self.redis_cli("cluster slots", raw=True)
        return parse_slots(result, self.registry, self.target.namespace)

    def cluster_pods(self) -> List["RedisPod"]:
        """Every pod of the cluster this pod belongs to."""
        return [self.peer(n.target) for n in self.cluster_nodes()]

    def cluster_check(self) -> str:
        return self.redis_cli_cluster(f"check {self.address}")

    def cluster_create(
        self, pods: Sequence["RedisPod"], replicas: int = 0, yes: bool = False
    ) -> str:
        """
        Create a cluster from this pod and the given pods.

        Without yes, redis-cli asks for confirmation on the local terminal.
        """
        if replicas < 0:
            raise PreconditionError("replicas must >= 0")
        addresses = " ".join([self.address] + [p.address for p in pods])
        cmd = f"create {addresses} --cluster-replicas {replicas}"
        if yes:
            cmd += " --cluster-yes"
        return self.redis_cli_cluster(cmd, stream_stdout=True, stream_stdin=not yes)

    def cluster_failover(self, force: bool = False, takeover: bool = False) -> str:
        """
        Promote this slave to master.

        Raises:
            PreconditionError: force and takeover together, or this pod is a master
        """
        if force and takeover:
            raise PreconditionError(
                "force and takeover can't be passed at sametime during failover"
            )
        if self.is_master():
            raise PreconditionError("can't do failover on a master node")
        cmd = "cluster failover"
        if force:
            cmd += " force"
        if takeover:
            cmd += " takeover"
        return self.redis_cli(cmd)

    def cluster_rebalance(self, options: RebalanceOptions) -> str:
        """
        Rebalance slots across masters.

        Options are validated before any command reaches the cluster.

        Raises:
            PreconditionError: Invalid options, or a weighted pod is not a member
        """
        options.validate()

        cmd = f"rebalance {self.address}"
        if options.weights:
            node_ids = {n.target.name: n.id for n in self.cluster_nodes()}
            weights = []
            for pod, weight in options.weights.items():
                if pod not in node_ids:
                    raise PreconditionError(f"can't find pod {pod} in redis cluster nodes")
                weights.append(f"{node_ids[pod]}={weight}")
            cmd += " --cluster-weight " + " ".join(weights)
        if options.use_empty_masters:
            cmd += " --cluster-use-empty-masters"
        cmd += f" --cluster-timeout {options.timeout}"
        if options.simulate:
            cmd += " --cluster-simulate"
        cmd += f" --cluster-pipeline {options.pipeline}"
        cmd += f" --cluster-threshold {options.threshold}"
        if options.replace:
            cmd += " --cluster-replace"
        return self.redis_cli_cluster(cmd, stream_stdout=True)

    def cluster_add_node(self, existing: "RedisPod", slave: bool = False) -> str:
        """
        Join this pod to the cluster of an existing member.

        Args:
            existing: A pod already in the cluster
            slave: Make this pod a slave of existing

        Raises:
            PreconditionError: slave requested but existing is not a master
        """
        cmd = f"add-node {self.address} {existing.address}"
        if slave:
            if not existing.is_master():
                raise PreconditionError(
                    f"{existing.name} is not master, can't add slave for it"
                )
            cmd += f" --cluster-slave --cluster-master-id {existing.node_id()}"
        return existing.redis_cli_cluster(cmd)

    def cluster_del_node(self, node_id: Optional[str] = None) -> str:
        """
        Remove a node from the cluster, sending del-node through this pod.

        Args:
            node_id: Node to delete, defaults to this pod's own node
        """
        node_id = node_id or self.node_id()
        return self.redis_cli_cluster(f"del-node {self.address} {node_id}")
