"""
Parser for CLUSTER SLOTS output.

redis-cli prints the nested reply as a flat token stream made of repeating
groups:

    start end master-ip master-port master-id [slave-ip slave-port slave-id]...

A token containing "." after a master triplet is an IP, so it opens a slave
triplet of the current range. A node metadata key (Redis 7) is skipped with
its value. Anything else starts the next group.
"""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Sequence, Tuple

from kuberc.errors import FormatError
from kuberc.modules.registry import PodRegistry, Target

from .common import correlate

SLOT_COUNT = 16384
GROUP_SIZE = 5
TRIPLET_SIZE = 3

# "1) 2) (integer) 5460" -> "5460", '3) "10.0.0.1"' -> "10.0.0.1"
_INDEX_PREFIX = re.compile(r"^(\s*\d+\)\s*)+")
_EMPTY_MARKERS = {"(empty array)", "(empty list or set)", "(nil)"}
# Redis 7 appends a key/value metadata map to every node triplet
NODE_METADATA_KEYS = {"hostname", "ip", "tls-port"}


@dataclass(frozen=True)
class SlotNode:
    """A master or slave endpoint serving a slot range."""

    ip: str
    port: int
    node_id: str
    target: Target

    @property
    def name(self) -> str:
        return self.target.name


@dataclass
class SlotRange:
    """A contiguous slot range with one master and any number of slaves."""

    start: int
    end: int
    master: SlotNode
    slaves: List[SlotNode] = field(default_factory=list)

    @property
    def size(self) -> int:
        return self.end - self.start + 1

    def __str__(self) -> str:
        line = f"{self.start}-{self.end}: master: {self.master.name}:{self.master.port}"
        if self.slaves:
            line += " slaves: " + " ".join(f"{s.name}:{s.port}" for s in self.slaves)
        return line


class SlotParseState(Enum):
    AWAITING_GROUP = "awaiting_group"
    HAVE_MASTER = "have_master"


def tokenize_slots(text: str) -> List[str]:
    """Flatten redis-cli CLUSTER SLOTS output (raw or formatted) into tokens."""
    tokens = []
    for line in text.splitlines():
        token = _INDEX_PREFIX.sub("", line).strip()
        if not token or token in _EMPTY_MARKERS:
            continue
        if token.startswith("(integer)"):
            token = token[len("(integer)"):].strip()
        if len(token) >= 2 and token[0] == token[-1] == '"':
            token = token[1:-1]
        tokens.append(token)
    return tokens


def _int(token: str, what: str) -> int:
    try:
        return int(token)
    except ValueError as e:
        raise FormatError(f"invalid {what} {token!r} in cluster slots") from e


class SlotTopologyParser:
    """
    Order-dependent parser over a CLUSTER SLOTS token stream.

    States: AWAITING_GROUP -> HAVE_MASTER -> (HAVE_MASTER | AWAITING_GROUP).
    The stream must end at a group boundary.
    """

    def __init__(self, registry: PodRegistry, namespace: str):
        self.registry = registry
        self.namespace = namespace
        self.state = SlotParseState.AWAITING_GROUP
        self.ranges: List[SlotRange] = []
        self._current: Optional[SlotRange] = None

    def _node(self, triplet: Sequence[str]) -> SlotNode:
        ip, port, node_id = triplet
        return SlotNode(
            ip=ip,
            port=_int(port, "port"),
            node_id=node_id,
            target=correlate(self.registry, self.namespace, ip),
        )

    def parse(self, tokens: Sequence[str]) -> List[SlotRange]:
        """
        Run the state machine over the whole stream.

        Raises:
            FormatError: Short stream, partial group, bad numbers or overlap
            CorrelationError: An IP has no pod
        """
        if len(tokens) < GROUP_SIZE:
            raise FormatError(
                f"cluster slots reply has {len(tokens)} tokens, expected at least {GROUP_SIZE}"
            )

        i = 0
        while i < len(tokens):
            if self.state is SlotParseState.AWAITING_GROUP:
                if i + GROUP_SIZE > len(tokens):
                    raise FormatError(f"cluster slots reply ends mid-group at token {i}")
                start = _int(tokens[i], "slot")
                end = _int(tokens[i + 1], "slot")
                if not 0 <= start <= end < SLOT_COUNT:
                    raise FormatError(f"invalid slot range {start}-{end}")
                self._current = SlotRange(start, end, self._node(tokens[i + 2:i + GROUP_SIZE]))
                self.ranges.append(self._current)
                self.state = SlotParseState.HAVE_MASTER
                i += GROUP_SIZE
            elif tokens[i] in NODE_METADATA_KEYS:
                if i + 2 > len(tokens):
                    raise FormatError(f"cluster slots reply ends mid-metadata at token {i}")
                i += 2
            elif "." in tokens[i]:
                if i + TRIPLET_SIZE > len(tokens):
                    raise FormatError(f"cluster slots reply ends mid-slave at token {i}")
                self._current.slaves.append(self._node(tokens[i:i + TRIPLET_SIZE]))
                i += TRIPLET_SIZE
            else:
                self.state = SlotParseState.AWAITING_GROUP

        _check_overlap(self.ranges)
        return self.ranges


def _check_overlap(ranges: Sequence[SlotRange]) -> None:
    ordered = sorted(ranges, key=lambda r: r.start)
    for prev, cur in zip(ordered, ordered[1:]):
        if cur.start <= prev.end:
            raise FormatError(
                f"slot ranges {prev.start}-{prev.end} and {cur.start}-{cur.end} overlap"
            )


def parse_slot_tokens(
    tokens: Sequence[str], registry: PodRegistry, namespace: str
) -> List[SlotRange]:
    """Parse a CLUSTER SLOTS token stream into correlated slot ranges."""
    return SlotTopologyParser(registry, namespace).parse(tokens)


def parse_slots(text: str, registry: PodRegistry, namespace: str) -> List[SlotRange]:
    """Parse redis-cli CLUSTER SLOTS output into correlated slot ranges."""
    return parse_slot_tokens(tokenize_slots(text), registry, namespace)


def coverage_gaps(ranges: Sequence[SlotRange]) -> List[Tuple[int, int]]:
    """Slot intervals (inclusive) not served by any range."""
    gaps = []
    next_slot = 0
    for r in sorted(ranges, key=lambda r: r.start):
        if r.start > next_slot:
            gaps.append((next_slot, r.start - 1))
        next_slot = max(next_slot, r.end + 1)
    if next_slot < SLOT_COUNT:
        gaps.append((next_slot, SLOT_COUNT - 1))
    return gaps
