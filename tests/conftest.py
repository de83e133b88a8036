"""
Shared pytest fixtures for kuberc tests.

This module provides:
- make_pod: V1Pod look-alikes built from SimpleNamespace
- FakeCoreApi: in-memory CoreV1Api answering pod reads and lists
- FakeExecStream: scripted exec websocket (stdout/stderr frames, status channel)
- ScriptedTunnel: CommandTunnel stand-in answering redis-cli lines by suffix
"""

import os
import sys
from types import SimpleNamespace
from typing import Dict, List, Optional, Sequence, Tuple
from unittest.mock import MagicMock

import pytest
from kubernetes.client.rest import ApiException
from websocket import WebSocketException

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from kuberc.modules.registry import PodRegistry, Target


# =============================================================================
# Kubernetes API fakes
# =============================================================================


def make_pod(
    name: str,
    ip: Optional[str],
    namespace: str = "default",
    phase: str = "Running",
    containers: Sequence[str] = ("redis",),
    node_name: str = "node-1",
):
    """Build an object shaped like kubernetes.client.V1Pod."""
    return SimpleNamespace(
        metadata=SimpleNamespace(name=name, namespace=namespace),
        spec=SimpleNamespace(
            containers=[SimpleNamespace(name=c) for c in containers],
            node_name=node_name,
        ),
        status=SimpleNamespace(pod_ip=ip, phase=phase),
    )


def make_target(
    name: str = "redis-0",
    ip: str = "10.0.0.1",
    namespace: str = "default",
    phase: str = "Running",
    container: str = "redis",
) -> Target:
    return Target.from_pod(make_pod(name, ip, namespace, phase, (container,)), container)


class FakeCoreApi:
    """In-memory CoreV1Api with call counters."""

    def __init__(self, pods: Sequence = ()):
        self.pods = list(pods)
        self.read_calls = 0
        self.list_calls = 0
        self.read_error: Optional[ApiException] = None
        self.connect_get_namespaced_pod_exec = MagicMock(name="exec")
        self.connect_get_namespaced_pod_portforward = MagicMock(name="portforward")

    def read_namespaced_pod(self, name: str, namespace: str):
        self.read_calls += 1
        if self.read_error is not None:
            raise self.read_error
        for pod in self.pods:
            if pod.metadata.name == name and pod.metadata.namespace == namespace:
                return pod
        raise ApiException(status=404, reason="Not Found")

    def list_namespaced_pod(self, namespace: str):
        self.list_calls += 1
        return SimpleNamespace(
            items=[p for p in self.pods if p.metadata.namespace == namespace]
        )


# =============================================================================
# Exec stream fake
# =============================================================================

SUCCESS_STATUS = '{"metadata": {}, "status": "Success"}'


def exit_status(code: int) -> str:
    return (
        '{"metadata": {}, "status": "Failure", '
        '"message": "command terminated with non-zero exit code", '
        '"reason": "NonZeroExitCode", '
        '"details": {"causes": [{"reason": "ExitCode", "message": "%d"}]}}' % code
    )


class FakeExecStream:
    """
    Scripted stand-in for kubernetes.stream.ws_client.WSClient.

    Each update() delivers one frame. With fail_after=N the (N+1)th update
    raises WebSocketException.
    """

    def __init__(
        self,
        stdout: Sequence[str] = (),
        stderr: Sequence[str] = (),
        status: str = SUCCESS_STATUS,
        fail_after: Optional[int] = None,
    ):
        self._frames: List[Tuple[str, str]] = [("out", s) for s in stdout]
        self._frames += [("err", s) for s in stderr]
        self._out = ""
        self._err = ""
        self.status = status
        self.fail_after = fail_after
        self.updates = 0
        self.closed = False
        self.stdin_written: List[str] = []

    def is_open(self) -> bool:
        return bool(self._frames) and not self.closed

    def update(self, timeout=0):
        self.updates += 1
        if self.fail_after is not None and self.updates > self.fail_after:
            raise WebSocketException("connection reset by peer")
        kind, data = self._frames.pop(0)
        if kind == "out":
            self._out += data
        else:
            self._err += data

    def peek_stdout(self):
        return bool(self._out)

    def read_stdout(self):
        data, self._out = self._out, ""
        return data

    def peek_stderr(self):
        return bool(self._err)

    def read_stderr(self):
        data, self._err = self._err, ""
        return data

    def write_stdin(self, data):
        self.stdin_written.append(data)

    def read_channel(self, channel):
        return self.status

    def close(self):
        self.closed = True


# =============================================================================
# Tunnel fake
# =============================================================================


class ScriptedTunnel:
    """
    CommandTunnel stand-in.

    Responses are looked up by (pod name, command suffix) first, then by
    command suffix alone. Unmatched commands return "OK".
    """

    def __init__(self, responses: Optional[Dict] = None):
        self.responses = dict(responses or {})
        self.calls: List[Tuple[Target, str, bool, bool]] = []

    def execute(self, target, command_line, stream_stdout=False, stream_stdin=False):
        self.calls.append((target, command_line, stream_stdout, stream_stdin))
        for key, value in self.responses.items():
            if isinstance(key, tuple):
                pod, suffix = key
                if pod == target.name and command_line.endswith(suffix):
                    return value
        for key, value in self.responses.items():
            if isinstance(key, str) and command_line.endswith(key):
                return value
        return "OK"

    @property
    def commands(self) -> List[str]:
        return [c[1] for c in self.calls]


# =============================================================================
# Fixtures
# =============================================================================

CLUSTER_PODS = [
    make_pod("redis-0", "10.0.0.1"),
    make_pod("redis-1", "10.0.0.2"),
    make_pod("redis-2", "10.0.0.3"),
    make_pod("redis-3", "10.0.0.4"),
    make_pod("redis-4", "10.0.0.5"),
    make_pod("redis-5", "10.0.0.6"),
]


@pytest.fixture
def core_api():
    """FakeCoreApi holding a six pod redis cluster in the default namespace."""
    return FakeCoreApi(CLUSTER_PODS + [make_pod("pending-0", None, phase="Pending")])


@pytest.fixture
def registry(core_api):
    return PodRegistry(core_api, "default")


@pytest.fixture
def target():
    return make_target()
