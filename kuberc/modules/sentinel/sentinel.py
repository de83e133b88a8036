"""
Redis Sentinel operations for kuberc.

Sentinel is queried with a Redis client over a port-forward session; the
Redis pods it monitors are inspected through the command tunnel.
"""

import logging
from contextlib import contextmanager
from typing import Callable, Iterator, List, Optional

import redis
from kubernetes import client

from kuberc.config import ForwardSettings, SentinelSettings
from kuberc.errors import FormatError, PreconditionError, TunnelError
from kuberc.modules.forward import CancelToken, ForwardSession, check_port
from kuberc.modules.registry import PodRegistry, Target
from kuberc.modules.topology import (
    SentinelMasterRecord,
    SentinelRecordBuilder,
    SentinelSlaveRecord,
    parse_info,
    parse_keyed_pairs,
)
from kuberc.modules.tunnel import CommandTunnel

logger = logging.getLogger("kuberc.sentinel")


class RedisInstance:
    """A Redis pod in a sentinel setup, driven through redis-cli."""

    def __init__(self, tunnel: CommandTunnel, target: Target, port: int = 6379):
        self.tunnel = tunnel
        self.target = target
        self.port = port

    @property
    def name(self) -> str:
        return self.target.name

    @property
    def ip(self) -> str:
        return self.target.pod_ip

    def execute(self, cmd: str) -> str:
        logger.debug(f"{self.name}: redis-cli -p {self.port} {cmd}")
        return self.tunnel.execute(self.target, f"redis-cli -p {self.port} {cmd}")

    def replication(self):
        """INFO replication as a string dictionary."""
        return parse_info(self.execute("info replication"))

    def is_slave(self) -> bool:
        return self.replication().get("role") == "slave"


class SentinelPod:
    """A sentinel pod and the Redis topology it monitors."""

    def __init__(
        self,
        core_api: client.CoreV1Api,
        tunnel: CommandTunnel,
        registry: PodRegistry,
        target: Target,
        settings: SentinelSettings,
        forward_settings: Optional[ForwardSettings] = None,
        cancel_token: Optional[CancelToken] = None,
        client_factory: Callable[..., redis.Redis] = redis.Redis,
    ):
        """
        Initialize sentinel pod.

        Args:
            core_api: Kubernetes CoreV1Api
            tunnel: Command tunnel for redis-cli calls
            registry: Pod registry for IP correlation
            target: Resolved sentinel pod
            settings: Sentinel settings (ports, containers, namespace)
            forward_settings: Port-forward settings
            cancel_token: Token stopping forward sessions; defaults to the
                process-wide interrupt token
            client_factory: Redis client class, replaceable in tests
        """
        self.api = core_api
        self.tunnel = tunnel
        self.registry = registry
        self.target = target
        self.settings = settings
        self.forward_settings = forward_settings or ForwardSettings()
        self.cancel_token = cancel_token
        self.client_factory = client_factory
        self.records = SentinelRecordBuilder(
            core_api,
            registry,
            target.namespace,
            settings.redis_port,
            forward_settings=self.forward_settings,
            cancel_token=cancel_token,
        )

    @classmethod
    def resolve(
        cls,
        core_api: client.CoreV1Api,
        tunnel: CommandTunnel,
        registry: PodRegistry,
        name: str,
        settings: SentinelSettings,
        **kwargs,
    ) -> "SentinelPod":
        """Resolve a sentinel pod by name."""
        target = registry.resolve(name, settings.container, settings.namespace)
        return cls(core_api, tunnel, registry, target, settings, **kwargs)

    @contextmanager
    def _client(self) -> Iterator[redis.Redis]:
        """A sentinel client valid while its forward session is open."""
        if self.settings.local_port:
            check_port(self.settings.local_port)
        session = ForwardSession(
            self.api,
            self.target,
            remote_port=self.settings.sentinel_port,
            local_port=self.settings.local_port,
            cancel_token=self.cancel_token,
            ready_timeout=self.forward_settings.ready_timeout,
            bind_address=self.forward_settings.bind_address,
        )
        with session:
            conn = self.client_factory(
                host=session.bind_address, port=session.local_port, decode_responses=True
            )
            try:
                yield conn
            except redis.RedisError as e:
                raise TunnelError(f"sentinel {self.target} request failed: {e}") from e
            finally:
                conn.close()

    def masters(self) -> List[SentinelMasterRecord]:
        """
        All masters monitored by this sentinel.

        Raises:
            FormatError: Malformed sentinel reply
            CorrelationError: A master IP has no pod
            TunnelError: Forwarding failed or sentinel rejected the request
        """
        with self._client() as conn:
            reply = conn.execute_command("SENTINEL", "MASTERS")
        return self.records.masters(reply)

    def master(self, name: str) -> SentinelMasterRecord:
        """
        One master with its slaves attached.

        Raises:
            FormatError: Malformed sentinel reply
            CorrelationError: A master or slave IP has no pod
            TunnelError: Forwarding failed or sentinel rejected the request
        """
        with self._client() as conn:
            master_reply = conn.execute_command("SENTINEL", "MASTER", name)
            slaves_reply = conn.execute_command("SENTINEL", "SLAVES", name)

        if not master_reply:
            raise FormatError(f"empty sentinel reply for master {name}")
        master = self.records.build_master(parse_keyed_pairs([master_reply])[0])
        master.slaves = self.records.slaves(slaves_reply)
        return master

    def slaves(self, name: str) -> List[SentinelSlaveRecord]:
        with self._client() as conn:
            reply = conn.execute_command("SENTINEL", "SLAVES", name)
        return self.records.slaves(reply)

    def failover(self, name: str) -> str:
        """Force a sentinel failover of the named master."""
        with self._client() as conn:
            result = conn.execute_command("SENTINEL", "FAILOVER", name)
        logger.info(f"Sentinel failover of {name}: {result}")
        return str(result)

    def redis_instance(self, name: str) -> RedisInstance:
        """Resolve a monitored Redis pod by name."""
        target = self.registry.resolve(
            name, self.settings.redis_container, self.settings.namespace
        )
        return RedisInstance(self.tunnel, target, self.settings.redis_port)


def sync(
    tunnel: CommandTunnel,
    registry: PodRegistry,
    slave_pod: str,
    master_pod: str,
    settings: SentinelSettings,
) -> str:
    """
    Make slave_pod a replica of master_pod.

    Raises:
        PreconditionError: master_pod is a slave, or slave_pod already is one
    """
    master = RedisInstance(
        tunnel,
        registry.resolve(master_pod, settings.redis_container, settings.namespace),
        settings.redis_port,
    )
    slave = RedisInstance(
        tunnel,
        registry.resolve(slave_pod, settings.redis_container, settings.namespace),
        settings.redis_port,
    )

    if master.is_slave():
        raise PreconditionError(f"target master pod {master_pod}'s role is slave")
    if slave.is_slave():
        raise PreconditionError(f"target slave pod {slave_pod}'s role is already slave")

    logger.info(f"Making {slave.name} a replica of {master.name} ({master.ip}:{master.port})")
    return slave.execute(f"replicaof {master.ip} {master.port}")
