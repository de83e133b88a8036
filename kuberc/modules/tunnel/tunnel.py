"""
Command Tunnel for kuberc.

Runs a shell command inside a pod container over the exec sub-resource and
collects its output.
"""

import io
import logging
import select
import sys
from typing import Optional, TextIO

import yaml
from kubernetes import client
from kubernetes.client.rest import ApiException
from kubernetes.stream import stream
from kubernetes.stream.ws_client import ERROR_CHANNEL
from websocket import WebSocketException

from kuberc.errors import ExecError
from kuberc.modules.registry import Target

logger = logging.getLogger("kuberc.tunnel")

# Seconds to wait for each websocket frame
UPDATE_TIMEOUT = 1


class CommandTunnel:
    """Executes shell commands inside pod containers."""

    def __init__(
        self,
        core_api: client.CoreV1Api,
        stdout: Optional[TextIO] = None,
        stderr: Optional[TextIO] = None,
        stdin: Optional[TextIO] = None,
    ):
        """
        Initialize command tunnel.

        Args:
            core_api: Kubernetes CoreV1Api
            stdout: Live stdout sink (defaults to sys.stdout)
            stderr: Live stderr sink (defaults to sys.stderr)
            stdin: Source for interactive commands (defaults to sys.stdin)
        """
        self.api = core_api
        self.stdout = stdout or sys.stdout
        self.stderr = stderr or sys.stderr
        self.stdin = stdin or sys.stdin

    def execute(
        self,
        target: Target,
        command_line: str,
        stream_stdout: bool = False,
        stream_stdin: bool = False,
    ) -> str:
        """
        Run command_line with sh -c inside the target container.

        Args:
            target: Resolved pod
            command_line: Shell command line
            stream_stdout: Relay stdout live and return "" instead of capturing
            stream_stdin: Wire local stdin into the remote shell

        Returns:
            Captured stdout, or "" when stream_stdout is set

        Raises:
            ExecError: Negotiation failed (no output), or the stream broke or
                the command exited non-zero (captured output in .output)
        """
        logger.debug(f"execute in {target}: {command_line}")

        try:
            resp = stream(
                self.api.connect_get_namespaced_pod_exec,
                target.name,
                target.namespace,
                container=target.container,
                command=["sh", "-c", command_line],
                stderr=True,
                stdin=stream_stdin,
                stdout=True,
                tty=stream_stdin,
                _preload_content=False,
            )
        except (ApiException, WebSocketException, OSError) as e:
            raise ExecError(f"failed to exec in {target}: {e}") from e

        buf = io.StringIO()
        sink = self.stdout if stream_stdout else buf
        stdin_open = stream_stdin

        try:
            while resp.is_open():
                resp.update(timeout=UPDATE_TIMEOUT)
                if resp.peek_stdout():
                    sink.write(resp.read_stdout())
                    if stream_stdout:
                        sink.flush()
                if resp.peek_stderr():
                    self.stderr.write(resp.read_stderr())
                    self.stderr.flush()
                if stdin_open:
                    stdin_open = self._forward_stdin(resp)
            exit_code = self._exit_code(resp)
        except (ApiException, WebSocketException, OSError) as e:
            output = buf.getvalue()
            raise ExecError(f"stream to {target} failed: {e}", output=output) from e
        finally:
            resp.close()

        output = buf.getvalue()
        if exit_code:
            raise ExecError(
                f"command in {target} exited with code {exit_code}", output=output
            )
        return output

    def _forward_stdin(self, resp) -> bool:
        """Send one pending stdin line. Returns False once stdin hit EOF."""
        readable, _, _ = select.select([self.stdin], [], [], 0)
        if not readable:
            return True
        line = self.stdin.readline()
        if not line:
            return False
        resp.write_stdin(line)
        return True

    @staticmethod
    def _exit_code(resp) -> Optional[int]:
        """
        Exit code reported on the error channel.

        The channel carries a v1.Status document; a missing document means
        the server did not report one and is treated as success.
        """
        raw = resp.read_channel(ERROR_CHANNEL)
        if not raw:
            return None
        status = yaml.safe_load(raw)
        if not isinstance(status, dict) or status.get("status") == "Success":
            return 0
        for cause in (status.get("details") or {}).get("causes") or []:
            if cause.get("reason") == "ExitCode":
                return int(cause.get("message", 1))
        logger.error(f"exec failed: {status.get('message', raw)}")
        return 1
