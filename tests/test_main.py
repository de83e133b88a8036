"""
Tests for the kuberc and kuberc-sen command line surfaces.

Kubernetes access is patched out; commands run against ScriptedTunnel and
FakeCoreApi through an injected AppContext.
"""

import os
import sys
from unittest.mock import MagicMock, patch

import pytest
import redis
from click.testing import CliRunner

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from conftest import ScriptedTunnel
from kuberc import main
from kuberc.config import SentinelSettings
from kuberc.errors import ExecError
from kuberc.modules.forward import CancelToken
from kuberc.modules.sentinel import SentinelPod

NODES = """\
id-0 10.0.0.1:6379@16379 myself,master - 0 0 1 connected 0-16383
id-3 10.0.0.4:6379@16379 slave id-0 0 0 4 connected
"""


@pytest.fixture(autouse=True)
def isolated(monkeypatch, tmp_path):
    monkeypatch.setenv("KUBERC_CONFIG", str(tmp_path / "missing.yaml"))
    with patch("kuberc.main.configure_logging"):
        yield


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def tunnel():
    return ScriptedTunnel({"cluster nodes": NODES, "cluster info": "cluster_state:ok\n"})


@pytest.fixture
def wired(core_api, tunnel):
    """Patch the lazily created clients of AppContext."""
    with patch("kuberc.main.load_core_api", return_value=core_api) as mock_load, \
            patch("kuberc.main.CommandTunnel", return_value=tunnel):
        yield mock_load


class TestClusterCommands:
    def test_rebalance_rejects_short_timeout_before_connecting(self, runner):
        with patch("kuberc.main.load_core_api") as mock_load:
            result = runner.invoke(main.cli, ["rebalance", "redis-0", "--timeout", "1000"])

        assert result.exit_code == 1
        assert "timeout must > 2000 ms for safety." in result.output
        mock_load.assert_not_called()

    def test_bad_weight_flag(self, runner):
        result = runner.invoke(main.cli, ["rebalance", "redis-0", "--weight", "redis-0"])

        assert result.exit_code == 1
        assert "wrong weight flag redis-0" in result.output

    def test_bad_config_file_is_an_error_exit(self, runner, tmp_path):
        path = tmp_path / "kuberc.yaml"
        path.write_text("cluster:\n  namespce: redis\n")

        with patch("kuberc.main.load_core_api") as mock_load:
            result = runner.invoke(main.cli, ["--config", str(path), "info", "redis-0"])

        assert result.exit_code == 1
        assert "Unknown key in config section 'cluster'" in result.output
        mock_load.assert_not_called()

    def test_info(self, runner, wired, tunnel):
        result = runner.invoke(main.cli, ["info", "redis-0"])

        assert result.exit_code == 0, result.output
        assert "cluster_state:ok" in result.output
        assert tunnel.commands == ["redis-cli -c -h 127.0.0.1 -p 6379 cluster info"]

    def test_namespace_flag(self, runner, wired, core_api):
        result = runner.invoke(main.cli, ["-n", "cache", "info", "redis-0"])

        assert result.exit_code == 1
        assert "pod cache/redis-0 not found" in result.output

    def test_call_all(self, runner, wired, tunnel):
        result = runner.invoke(main.cli, ["call", "--all", "redis-0", "dbsize"])

        assert result.exit_code == 0, result.output
        assert ">>> redis-0:" in result.output
        assert ">>> redis-3:" in result.output
        dbsize = [c for c in tunnel.calls if c[1].endswith("dbsize")]
        assert [c[0].name for c in dbsize] == ["redis-0", "redis-3"]

    def test_config_set_single_pod(self, runner, wired, tunnel):
        result = runner.invoke(main.cli, ["config-set", "redis-0", "maxmemory", "1gb"])

        assert result.exit_code == 0, result.output
        assert tunnel.commands == ["redis-cli -c -h 127.0.0.1 -p 6379 config set maxmemory 1gb"]

    def test_nodes_grouped(self, runner, wired):
        result = runner.invoke(main.cli, ["nodes", "redis-0"])

        assert result.exit_code == 0, result.output
        lines = result.output.splitlines()
        assert lines[0].startswith("Master: id: id-0")
        assert lines[1].startswith("\t Slave: id: id-3")

    def test_slots_sorted_by_start(self, runner, wired, tunnel):
        tunnel.responses["cluster slots"] = "\n".join([
            "5461", "16383", "10.0.0.2", "6379", "id-1",
            "0", "5460", "10.0.0.1", "6379", "id-0", "10.0.0.4", "6379", "id-3",
        ]) + "\n"

        result = runner.invoke(main.cli, ["slots", "redis-0"])

        assert result.exit_code == 0, result.output
        assert result.output.index("0-5460") < result.output.index("5461-16383")
        assert "Warning" not in result.output

    def test_del_node_entry_pod(self, runner, wired, tunnel):
        tunnel.responses["cluster myid"] = "id-3\n"

        result = runner.invoke(main.cli, ["del-node", "redis-3", "--entry-pod", "redis-0"])

        assert result.exit_code == 0, result.output
        target, cmd, _, _ = tunnel.calls[-1]
        assert target.name == "redis-0"
        assert cmd == "redis-cli --cluster del-node 10.0.0.1:6379 id-3"

    def test_failover_conflicting_flags(self, runner, wired, tunnel):
        result = runner.invoke(main.cli, ["failover", "redis-3", "--force", "--takeover"])

        assert result.exit_code == 1
        assert "can't be passed at sametime" in result.output
        assert tunnel.calls == []

    def test_exec_error_prints_partial_output(self, runner):
        pod = MagicMock()
        pod.cluster_check.side_effect = ExecError("command exited with code 1", output="[ERR] Not all slots covered")

        with patch.object(main.AppContext, "redis_pod", return_value=pod):
            result = runner.invoke(main.cli, ["check", "redis-0"])

        assert result.exit_code == 1
        assert "[ERR] Not all slots covered" in result.output
        assert "command exited with code 1" in result.output


class TestSentinelCommands:
    def test_sync(self, runner, wired, tunnel):
        tunnel.responses[("redis-0", "info replication")] = "role:master\n"
        tunnel.responses[("redis-1", "info replication")] = "role:master\n"

        result = runner.invoke(main.sen, ["sync", "redis-1", "redis-0"])

        assert result.exit_code == 0, result.output
        assert tunnel.commands[-1] == "redis-cli -p 6379 replicaof 10.0.0.1 6379"

    def test_sync_rejects_slave_master(self, runner, wired, tunnel):
        tunnel.responses[("redis-0", "info replication")] = "role:slave\n"

        result = runner.invoke(main.sen, ["sync", "redis-1", "redis-0"])

        assert result.exit_code == 1
        assert "target master pod redis-0's role is slave" in result.output

    def test_masters_table(self, runner, wired):
        sentinel = MagicMock()
        record = MagicMock(num_slaves=1)
        record.node.name = "mymaster"
        record.node.pod_name = "redis-0"
        record.node.ip = "10.0.0.1"
        record.node.flags = "master"
        sentinel.masters.return_value = [record]

        with patch.object(main.AppContext, "sentinel_pod", return_value=sentinel):
            result = runner.invoke(main.sen, ["masters", "sentinel-0"])

        assert result.exit_code == 0, result.output
        assert "mymaster" in result.output
        assert "redis-0" in result.output

    def test_unknown_master_is_an_error_exit(self, runner, core_api, registry):
        conn = MagicMock()
        conn.execute_command.side_effect = redis.ResponseError("ERR No such master with that name")
        sentinel = SentinelPod.resolve(
            core_api, ScriptedTunnel(), registry, "redis-5", SentinelSettings(),
            cancel_token=CancelToken(), client_factory=MagicMock(return_value=conn),
        )

        with patch("kuberc.modules.sentinel.sentinel.ForwardSession"), \
                patch.object(main.AppContext, "sentinel_pod", return_value=sentinel):
            result = runner.invoke(main.sen, ["master", "sentinel-0", "nope"])

        assert result.exit_code == 1
        assert not isinstance(result.exception, redis.RedisError)
        assert "No such master with that name" in result.output
