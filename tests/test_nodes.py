"""
Unit tests for the CLUSTER NODES parser.

Tests cover:
- Positional field parsing and the "-" master id
- Slot counting, including migrating markers
- Malformed lines
- Pod correlation and master grouping
"""

import os
import sys

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from kuberc.errors import CorrelationError, FormatError
from kuberc.modules.topology import (
    correlate_nodes,
    format_node_line,
    group_by_master,
    parse_node_line,
    parse_nodes,
    slot_count,
)

MASTER_ID = "e7d1eecce10fd6bb5eb35b9f99a514335d9ba9ca"
SLAVE_ID = "07c37dfeb235213a872192d90877d0cd55635b91"

CLUSTER_NODES = f"""\
{MASTER_ID} 10.0.0.1:6379@16379 myself,master - 0 1426238316000 1 connected 0-5460
67ed2db8d677e59ec4a4cefb06858cf2a1a89fa1 10.0.0.2:6379@16379 master - 0 1426238318243 2 connected 5461-10922
292f8b365bb7edb5e285caf0b7e6ddc7265d2f4f 10.0.0.3:6379@16379 master - 0 1426238317741 3 connected 10923-16383
{SLAVE_ID} 10.0.0.4:6379@16379 slave {MASTER_ID} 0 1426238317239 4 connected
6ec23923021cf3ffec47632106199cb7f496ce01 10.0.0.5:6379@16379 slave 67ed2db8d677e59ec4a4cefb06858cf2a1a89fa1 0 1426238316232 5 connected
"""


class TestParseNodeLine:
    def test_master(self):
        node = parse_node_line(CLUSTER_NODES.splitlines()[0])

        assert node.id == MASTER_ID
        assert node.ip == "10.0.0.1"
        assert node.port == 6379
        assert node.bus_port == 16379
        assert node.flags == ("myself", "master")
        assert node.master_id == ""
        assert node.epoch == 1
        assert node.link_state == "connected"
        assert node.slots == ("0-5460",)
        assert node.is_master and node.is_myself and not node.is_slave
        assert node.slot_count == 5461

    def test_slave_keeps_master_id(self):
        node = parse_node_line(CLUSTER_NODES.splitlines()[3])

        assert node.is_slave
        assert node.master_id == MASTER_ID
        assert node.slots == ()

    def test_hostname_suffix(self):
        line = f"{MASTER_ID} 10.0.0.1:6379@16379,redis-0.redis master - 0 0 1 connected"
        node = parse_node_line(line)

        assert node.ip == "10.0.0.1"
        assert node.bus_port == 16379

    def test_noflags(self):
        line = f"{MASTER_ID} 10.0.0.1:6379@16379 noflags - 0 0 0 disconnected"
        assert parse_node_line(line).flags == ()

    def test_too_few_fields(self):
        with pytest.raises(FormatError, match="expected at least 8"):
            parse_node_line(f"{MASTER_ID} 10.0.0.1:6379@16379 master - 0 0 1")

    def test_bad_numeric_field(self):
        with pytest.raises(FormatError):
            parse_node_line(f"{MASTER_ID} 10.0.0.1:6379@16379 master - x 0 1 connected")

    def test_bad_address(self):
        with pytest.raises(FormatError, match="invalid node address"):
            parse_node_line(f"{MASTER_ID} 10.0.0.1 master - 0 0 1 connected")

    @pytest.mark.parametrize("line", CLUSTER_NODES.splitlines()[:4])
    def test_format_round_trip(self, line):
        node = parse_node_line(line)
        again = parse_node_line(format_node_line(node))

        assert (again.id, again.ip, again.flags, again.master_id, again.link_state) == (
            node.id, node.ip, node.flags, node.master_id, node.link_state,
        )


class TestParseNodes:
    def test_parse_all(self):
        nodes = parse_nodes(CLUSTER_NODES + "\n\n")
        assert len(nodes) == 5

    def test_error_names_line(self):
        text = CLUSTER_NODES + "garbage\n"
        with pytest.raises(FormatError, match="line 6"):
            parse_nodes(text)


class TestSlotCount:
    def test_ranges_and_single_slots(self):
        assert slot_count(["0-5461", "12000"]) == 5463

    def test_migrating_markers_are_ignored(self):
        assert slot_count(["0-99", f"[100->-{SLAVE_ID}]", f"[101-<-{SLAVE_ID}]"]) == 100

    def test_bad_token(self):
        with pytest.raises(FormatError):
            slot_count(["abc"])

    def test_reversed_range(self):
        with pytest.raises(FormatError):
            slot_count(["10-5"])


class TestCorrelation:
    def test_attaches_pods(self, registry):
        nodes = correlate_nodes(parse_nodes(CLUSTER_NODES), registry, "default")

        assert [n.target.name for n in nodes] == [
            "redis-0", "redis-1", "redis-2", "redis-3", "redis-4",
        ]
        assert str(nodes[0]) == (
            f"id: {MASTER_ID}, ip: 10.0.0.1, host: node-1, pod: default/redis-0, master: true"
        )

    def test_unknown_ip(self, registry):
        line = f"{MASTER_ID} 10.9.9.9:6379@16379 master - 0 0 1 connected 0-16383"

        with pytest.raises(CorrelationError) as exc:
            correlate_nodes(parse_nodes(line), registry, "default")
        assert exc.value.ip == "10.9.9.9"


class TestGroupByMaster:
    def test_groups(self):
        groups = group_by_master(parse_nodes(CLUSTER_NODES))

        assert [m.ip for m, _ in groups] == ["10.0.0.1", "10.0.0.2", "10.0.0.3"]
        assert [s.ip for s in groups[0][1]] == ["10.0.0.4"]
        assert [s.ip for s in groups[1][1]] == ["10.0.0.5"]
        assert groups[2][1] == []

    def test_orphan_slaves_last(self):
        line = (
            "6ec23923021cf3ffec47632106199cb7f496ce01 10.0.0.6:6379@16379 slave "
            "ffffffffffffffffffffffffffffffffffffffff 0 0 6 connected"
        )
        groups = group_by_master(parse_nodes(CLUSTER_NODES + line))

        master, slaves = groups[-1]
        assert master is None
        assert [s.ip for s in slaves] == ["10.0.0.6"]
