"""
Topology Module - Black Box Interface

Purpose: Turn redis-cli and sentinel replies into structured topology
Interface: parse_nodes(), parse_slots(), parse_keyed_pairs(), parse_info(),
           SentinelRecordBuilder
Hidden: Positional field layout, CLUSTER SLOTS state machine, pod correlation

Parsing is all-or-nothing: any malformed line or unknown IP fails the call.
"""

from .info import parse_info
from .nodes import (
    ClusterNode,
    correlate_nodes,
    format_node_line,
    group_by_master,
    parse_node_line,
    parse_nodes,
    slot_count,
)
from .sentinel import (
    SentinelMasterRecord,
    SentinelRecordBuilder,
    SentinelSlaveRecord,
    TopologyTarget,
    parse_keyed_pairs,
)
from .slots import (
    SlotNode,
    SlotParseState,
    SlotRange,
    SlotTopologyParser,
    coverage_gaps,
    parse_slot_tokens,
    parse_slots,
    tokenize_slots,
)

__all__ = [
    "ClusterNode",
    "SentinelMasterRecord",
    "SentinelRecordBuilder",
    "SentinelSlaveRecord",
    "SlotNode",
    "SlotParseState",
    "SlotRange",
    "SlotTopologyParser",
    "TopologyTarget",
    "correlate_nodes",
    "coverage_gaps",
    "format_node_line",
    "group_by_master",
    "parse_info",
    "parse_keyed_pairs",
    "parse_node_line",
    "parse_nodes",
    "parse_slot_tokens",
    "parse_slots",
    "slot_count",
    "tokenize_slots",
]
