"""
Parser for CLUSTER NODES output.

https://redis.io/commands/cluster-nodes

Each line has fixed positional fields:

    <id> <ip:port@cport[,hostname]> <flags> <master> <ping-sent> <pong-recv>
    <config-epoch> <link-state> <slot> <slot> ... <slot>
"""

from dataclasses import dataclass, field, replace
from typing import Iterable, List, Optional, Sequence, Tuple

from kuberc.errors import FormatError
from kuberc.modules.registry import PodRegistry, Target

from .common import correlate

MIN_FIELDS = 8
NO_MASTER = "-"
NO_FLAGS = "noflags"


@dataclass(frozen=True)
class ClusterNode:
    """One node from CLUSTER NODES, optionally correlated to its pod."""

    id: str
    ip: str
    port: int
    bus_port: int
    flags: Tuple[str, ...]
    master_id: str
    ping_sent: int
    pong_recv: int
    epoch: int
    link_state: str
    slots: Tuple[str, ...] = ()
    target: Optional[Target] = field(default=None, compare=False)

    @property
    def is_master(self) -> bool:
        return "master" in self.flags

    @property
    def is_slave(self) -> bool:
        return "slave" in self.flags

    @property
    def is_myself(self) -> bool:
        return "myself" in self.flags

    @property
    def slot_count(self) -> int:
        return slot_count(self.slots)

    def __str__(self) -> str:
        if self.target is not None:
            pod = f"{self.target.namespace}/{self.target.name}"
            host = self.target.node_name
        else:
            pod = host = ""
        return (
            f"id: {self.id}, ip: {self.ip}, host: {host}, pod: {pod}, "
            f"master: {str(self.is_master).lower()}"
        )


def slot_count(slots: Iterable[str]) -> int:
    """
    Number of slots covered by CLUSTER NODES slot tokens.

    "a-b" counts b-a+1, a single slot counts 1. Importing/migrating markers
    such as "[93->-<id>]" are not owned slots and count 0.

    Raises:
        FormatError: A token is not a slot or slot range
    """
    total = 0
    for token in slots:
        if token.startswith("["):
            continue
        start, sep, end = token.partition("-")
        try:
            if sep:
                lo, hi = int(start), int(end)
                if hi < lo:
                    raise FormatError(f"invalid slot range {token}")
                total += hi - lo + 1
            else:
                int(token)
                total += 1
        except ValueError as e:
            raise FormatError(f"invalid slot token {token}") from e
    return total


def _parse_address(address: str) -> Tuple[str, int, int]:
    # ip:port@cport, optionally followed by ,hostname
    address = address.split(",", 1)[0]
    host_port, sep, bus = address.partition("@")
    ip, colon, port = host_port.rpartition(":")
    if not colon:
        raise FormatError(f"invalid node address {address}")
    try:
        return ip, int(port), int(bus) if sep else 0
    except ValueError as e:
        raise FormatError(f"invalid node address {address}") from e


def parse_node_line(line: str) -> ClusterNode:
    """
    Parse one CLUSTER NODES line.

    Raises:
        FormatError: Too few fields or a malformed numeric/address field
    """
    parts = line.split()
    if len(parts) < MIN_FIELDS:
        raise FormatError(
            f"cluster node line has {len(parts)} fields, expected at least {MIN_FIELDS}: {line!r}"
        )

    ip, port, bus_port = _parse_address(parts[1])
    try:
        ping_sent, pong_recv, epoch = int(parts[4]), int(parts[5]), int(parts[6])
    except ValueError as e:
        raise FormatError(f"invalid numeric field in cluster node line: {line!r}") from e

    return ClusterNode(
        id=parts[0],
        ip=ip,
        port=port,
        bus_port=bus_port,
        flags=tuple(f for f in parts[2].split(",") if f and f != NO_FLAGS),
        master_id="" if parts[3] == NO_MASTER else parts[3],
        ping_sent=ping_sent,
        pong_recv=pong_recv,
        epoch=epoch,
        link_state=parts[7],
        slots=tuple(parts[MIN_FIELDS:]),
    )


def parse_nodes(text: str) -> List[ClusterNode]:
    """Parse every non-empty line of a CLUSTER NODES reply."""
    nodes = []
    for lineno, line in enumerate(text.splitlines(), 1):
        line = line.strip()
        if not line:
            continue
        try:
            nodes.append(parse_node_line(line))
        except FormatError as e:
            raise FormatError(f"line {lineno}: {e}") from e
    return nodes


def format_node_line(node: ClusterNode) -> str:
    """Render a node back into CLUSTER NODES line format."""
    fields = [
        node.id,
        f"{node.ip}:{node.port}@{node.bus_port}",
        ",".join(node.flags) or NO_FLAGS,
        node.master_id or NO_MASTER,
        str(node.ping_sent),
        str(node.pong_recv),
        str(node.epoch),
        node.link_state,
    ]
    fields.extend(node.slots)
    return " ".join(fields)


def correlate_nodes(
    nodes: Sequence[ClusterNode], registry: PodRegistry, namespace: str
) -> List[ClusterNode]:
    """
    Attach the owning pod to every node.

    Raises:
        CorrelationError: A node IP has no pod
    """
    return [replace(n, target=correlate(registry, namespace, n.ip)) for n in nodes]


def group_by_master(
    nodes: Sequence[ClusterNode],
) -> List[Tuple[Optional[ClusterNode], List[ClusterNode]]]:
    """
    Group slaves under their masters, in listing order.

    Slaves whose master is not in the listing are returned last under None.
    """
    masters = [n for n in nodes if n.is_master]
    groups = {m.id: (m, []) for m in masters}
    orphans = []
    for n in nodes:
        if n.is_master:
            continue
        if n.master_id in groups:
            groups[n.master_id][1].append(n)
        else:
            orphans.append(n)

    result = [groups[m.id] for m in masters]
    if orphans:
        result.append((None, orphans))
    return result
