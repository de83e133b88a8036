"""
Parsers for SENTINEL MASTERS / MASTER / SLAVES replies.

Sentinel answers with flat key/value arrays:

    [["name", "mymaster", "ip", "10.0.0.1", "port", "6379", ...], ...]
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence

import redis
from kubernetes import client

from kuberc.config import ForwardSettings
from kuberc.errors import FormatError, TunnelError
from kuberc.modules.forward import CancelToken, ForwardSession, SessionState
from kuberc.modules.registry import PodRegistry, Target

from .common import correlate, to_str
from .info import parse_info

logger = logging.getLogger("kuberc.topology.sentinel")


def parse_keyed_pairs(reply: Sequence[Any]) -> List[Dict[str, str]]:
    """
    Convert an array of flat key/value arrays into dictionaries.

    Even positions are keys, odd positions are values.

    Raises:
        FormatError: The reply is not a list of even-length lists
    """
    if not isinstance(reply, (list, tuple)):
        raise FormatError(f"expected a list reply from sentinel, got {type(reply).__name__}")

    result = []
    for item in reply:
        if isinstance(item, dict):
            result.append({to_str(k): to_str(v) for k, v in item.items()})
            continue
        if not isinstance(item, (list, tuple)) or len(item) % 2:
            raise FormatError(f"sentinel reply entry is not a key/value list: {item!r}")
        result.append({to_str(item[i]): to_str(item[i + 1]) for i in range(0, len(item), 2)})
    return result


@dataclass
class TopologyTarget:
    """A Redis instance reported by sentinel, correlated to its pod."""

    name: str
    ip: str
    port: int
    flags: str
    role_reported: str
    target: Target
    forward: Optional[ForwardSession] = field(default=None, repr=False)

    @property
    def pod_name(self) -> str:
        return self.target.name


@dataclass
class SentinelSlaveRecord:
    """A slave of a sentinel-monitored master."""

    node: TopologyTarget

    def sync_status(
        self, client_factory: Callable[..., redis.Redis] = redis.Redis
    ) -> Dict[str, str]:
        """
        Read INFO replication from the slave over its forward session.

        Returns:
            Replication fields, or {} when no forward session is attached
        """
        forward = self.node.forward
        if forward is None:
            return {}
        if forward.state is SessionState.STOPPED:
            forward = self.node.forward = forward.clone()

        with forward:
            conn = client_factory(
                host=forward.bind_address, port=forward.local_port, decode_responses=True
            )
            try:
                conn.set_response_callback("INFO", lambda response, **options: response)
                return parse_info(conn.execute_command("INFO", "replication"))
            except redis.RedisError as e:
                raise TunnelError(f"INFO replication from {self.node.pod_name} failed: {e}") from e
            finally:
                conn.close()

    def describe(self, status: Optional[Dict[str, str]] = None) -> str:
        status = self.sync_status() if status is None else status
        return (
            f"\tPod:{self.node.pod_name}, IP:{self.node.ip}, Flags:{self.node.flags}, "
            f"LinkStatus:{status.get('master_link_status', '')}, "
            f"IOSecAgo:{status.get('master_last_io_seconds_ago', '')}, "
            f"InSync:{status.get('master_sync_in_progress', '')}"
        )


@dataclass
class SentinelMasterRecord:
    """A master monitored by sentinel."""

    node: TopologyTarget
    num_slaves: int
    slaves: List[SentinelSlaveRecord] = field(default_factory=list)

    def __str__(self) -> str:
        return (
            f"Master<{self.node.name}: {self.node.pod_name}, {self.node.ip}, "
            f"{self.num_slaves} slaves>"
        )


class SentinelRecordBuilder:
    """Builds correlated sentinel records from parsed reply dictionaries."""

    def __init__(
        self,
        core_api: client.CoreV1Api,
        registry: PodRegistry,
        namespace: str,
        redis_port: int,
        forward_settings: Optional[ForwardSettings] = None,
        cancel_token: Optional[CancelToken] = None,
    ):
        self.api = core_api
        self.registry = registry
        self.namespace = namespace
        self.redis_port = redis_port
        self.forward_settings = forward_settings or ForwardSettings()
        self.cancel_token = cancel_token

    def _node(self, fields: Dict[str, str]) -> TopologyTarget:
        ip = fields.get("ip", "")
        try:
            port = int(fields.get("port", self.redis_port))
        except ValueError as e:
            raise FormatError(f"invalid port {fields.get('port')!r} for {ip}") from e

        target = correlate(self.registry, self.namespace, ip)
        logger.debug(f"Sentinel node {fields.get('name', ip)} ({ip}:{port}) is pod {target.name}")
        forward = ForwardSession(
            self.api,
            target,
            remote_port=self.redis_port,
            local_port=0,
            cancel_token=self.cancel_token,
            ready_timeout=self.forward_settings.ready_timeout,
            bind_address=self.forward_settings.bind_address,
        )
        return TopologyTarget(
            name=fields.get("name", ""),
            ip=ip,
            port=port,
            flags=fields.get("flags", ""),
            role_reported=fields.get("role-reported", ""),
            target=target,
            forward=forward,
        )

    def build_master(self, fields: Dict[str, str]) -> SentinelMasterRecord:
        """
        Raises:
            FormatError: num-slaves is missing or not an integer
            CorrelationError: The master IP has no pod
        """
        raw = fields.get("num-slaves")
        try:
            num_slaves = int(raw)
        except (TypeError, ValueError) as e:
            raise FormatError(f"invalid num-slaves {raw!r} for master {fields.get('name')}") from e
        return SentinelMasterRecord(node=self._node(fields), num_slaves=num_slaves)

    def build_slave(self, fields: Dict[str, str]) -> SentinelSlaveRecord:
        """
        Raises:
            CorrelationError: The slave IP has no pod
        """
        return SentinelSlaveRecord(node=self._node(fields))

    def masters(self, reply: Sequence[Any]) -> List[SentinelMasterRecord]:
        return [self.build_master(f) for f in parse_keyed_pairs(reply)]

    def slaves(self, reply: Sequence[Any]) -> List[SentinelSlaveRecord]:
        return [self.build_slave(f) for f in parse_keyed_pairs(reply)]
