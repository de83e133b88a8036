"""
Port-Forward Session for kuberc.

Relays a local TCP port to a port inside a pod over the portforward
sub-resource. The session is single-use: IDLE -> STARTED -> STOPPED.
"""

import logging
import select
import socket
import threading
from enum import Enum
from typing import List, Optional

from kubernetes import client
from kubernetes.client.rest import ApiException
from kubernetes.stream import portforward
from websocket import WebSocketException

from kuberc.errors import PreconditionError, TunnelError
from kuberc.modules.registry import Target

from .cancel import CancelToken, interrupt_token

logger = logging.getLogger("kuberc.forward")

POLL_INTERVAL = 0.5
BUFFER_SIZE = 64 * 1024
JOIN_TIMEOUT = 5.0


class SessionState(Enum):
    """Lifecycle states of a forward session."""

    IDLE = "idle"
    STARTED = "started"
    STOPPED = "stopped"


def check_port(port: int, host: str = "localhost") -> None:
    """
    Make sure nothing is listening on a local port.

    Raises:
        PreconditionError: If the port is already in use
    """
    try:
        conn = socket.create_connection((host, port), timeout=2)
    except OSError:
        return
    conn.close()
    raise PreconditionError(f"{host}:{port} is in use, can't port-forward to k8s pod")


class ForwardSession:
    """Local TCP relay into a pod container port."""

    def __init__(
        self,
        core_api: client.CoreV1Api,
        target: Target,
        remote_port: int,
        local_port: int,
        cancel_token: Optional[CancelToken] = None,
        ready_timeout: float = 30.0,
        bind_address: str = "127.0.0.1",
    ):
        """
        Initialize forward session.

        Args:
            core_api: Kubernetes CoreV1Api
            target: Pod to forward into
            remote_port: Port inside the pod
            local_port: Local port to listen on (0 picks a free port)
            cancel_token: Token that stops the session; defaults to the
                process-wide interrupt token
            ready_timeout: Seconds start() waits for the relay
            bind_address: Local listen address
        """
        self.api = core_api
        self.target = target
        self.remote_port = remote_port
        self.local_port = local_port
        self._requested_port = local_port
        self.ready_timeout = ready_timeout
        self.bind_address = bind_address

        self._cancel_token = cancel_token
        self._cancel_handle: Optional[int] = None
        self._state = SessionState.IDLE
        self._starting = False
        self._lock = threading.Lock()
        self._ready = threading.Event()
        self._stop = threading.Event()
        self._error: Optional[BaseException] = None
        self._listener: Optional[socket.socket] = None
        self._relay_thread: Optional[threading.Thread] = None
        self._pipe_threads: List[threading.Thread] = []

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def started(self) -> bool:
        return self._state is SessionState.STARTED

    def __repr__(self) -> str:
        return (
            f"ForwardSession({self.target}:{self.remote_port} -> "
            f"{self.bind_address}:{self.local_port}, {self._state.value})"
        )

    def clone(self) -> "ForwardSession":
        """A new idle session with the same target, ports and token."""
        return ForwardSession(
            self.api,
            self.target,
            self.remote_port,
            self._requested_port,
            cancel_token=self._cancel_token,
            ready_timeout=self.ready_timeout,
            bind_address=self.bind_address,
        )

    def __enter__(self) -> "ForwardSession":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()

    def start(self) -> None:
        """
        Open the relay and block until it is ready.

        A second start() on a started session is a no-op.

        Raises:
            PreconditionError: Target not running, or session already stopped
            TunnelError: Negotiation failed, timed out, or was interrupted
        """
        with self._lock:
            if self._state is SessionState.STARTED:
                logger.debug("port forwarding already started")
                return
            if self._state is SessionState.STOPPED:
                raise PreconditionError(f"port forwarding to {self.target} was already stopped")
            if self._starting:
                raise PreconditionError(f"port forwarding to {self.target} is already starting")
            if not self.target.running:
                raise PreconditionError(
                    f"pod {self.target} is not running (phase: {self.target.phase})"
                )
            token = self._cancel_token or interrupt_token()
            self._cancel_token = token
            if token.cancelled:
                raise TunnelError("port forwarding interrupted")
            self._starting = True

        try:
            self._relay_thread = threading.Thread(
                target=self._relay, daemon=True, name=f"forward-{self.target.name}"
            )
            self._relay_thread.start()

            if not self._ready.wait(self.ready_timeout):
                self._abort()
                raise TunnelError(
                    f"timed out after {self.ready_timeout}s waiting for port forwarding to {self.target}"
                )
            if self._error is not None:
                self._abort()
                raise TunnelError(
                    f"port forwarding to {self.target} failed: {self._error}"
                ) from self._error

            with self._lock:
                self._state = SessionState.STARTED
            self._cancel_handle = token.subscribe(self.stop)
        finally:
            with self._lock:
                self._starting = False

        if token.cancelled:
            self.stop()
            raise TunnelError("port forwarding interrupted")

        logger.info(
            f"Port forwarding for {self.target}:{self.remote_port} -> "
            f"{self.bind_address}:{self.local_port} is ready"
        )

    def stop(self) -> None:
        """Release the relay. Only the first call after a successful start() acts."""
        with self._lock:
            if self._state is not SessionState.STARTED:
                return
            self._state = SessionState.STOPPED
            handle, self._cancel_handle = self._cancel_handle, None

        logger.info(
            f"Stop port forwarding for {self.target}:{self.remote_port} -> {self.local_port}"
        )
        if handle is not None and self._cancel_token is not None:
            self._cancel_token.unsubscribe(handle)
        self._shutdown()

    def _abort(self) -> None:
        with self._lock:
            self._state = SessionState.STOPPED
        self._shutdown()

    def _shutdown(self) -> None:
        self._stop.set()
        self._close_listener()

        current = threading.current_thread()
        with self._lock:
            threads = list(self._pipe_threads)
        if self._relay_thread is not None:
            threads.append(self._relay_thread)
        for thread in threads:
            if thread is not current:
                thread.join(JOIN_TIMEOUT)

    def _close_listener(self) -> None:
        listener, self._listener = self._listener, None
        if listener is not None:
            listener.close()

    def _dial(self):
        """Negotiate one upgraded portforward connection."""
        pf = portforward(
            self.api.connect_get_namespaced_pod_portforward,
            self.target.name,
            self.target.namespace,
            ports=str(self.remote_port),
        )
        error = pf.error(self.remote_port)
        if error:
            pf.close()
            raise TunnelError(f"port {self.remote_port} on {self.target}: {error}")
        return pf

    def _relay(self) -> None:
        """Accept local connections and hand each to a pipe thread."""
        pending = None
        try:
            listener = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
            listener.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            listener.bind((self.bind_address, self.local_port))
            listener.listen(16)
            self._listener = listener
            self.local_port = listener.getsockname()[1]
            pending = self._dial()
        except (OSError, ApiException, WebSocketException, TunnelError) as e:
            self._error = e
            self._close_listener()
            self._ready.set()
            return

        self._ready.set()
        try:
            while not self._stop.is_set():
                try:
                    readable, _, _ = select.select([listener], [], [], POLL_INTERVAL)
                    if not readable:
                        continue
                    conn, addr = listener.accept()
                except (OSError, ValueError):
                    break

                logger.debug(f"Accepted {addr} for {self.target}:{self.remote_port}")
                try:
                    pf = pending if pending is not None else self._dial()
                except (ApiException, WebSocketException, OSError, TunnelError) as e:
                    logger.error(f"Failed to forward connection to {self.target}: {e}")
                    conn.close()
                    continue
                pending = None

                thread = threading.Thread(
                    target=self._pipe, args=(conn, pf), daemon=True,
                    name=f"forward-pipe-{self.target.name}",
                )
                with self._lock:
                    self._pipe_threads = [t for t in self._pipe_threads if t.is_alive()]
                    self._pipe_threads.append(thread)
                thread.start()
        finally:
            if pending is not None:
                pending.close()
            self._close_listener()

    def _pipe(self, conn: socket.socket, pf) -> None:
        """Copy bytes both ways until either side closes or the session stops."""
        remote = pf.socket(self.remote_port)
        remote.setblocking(True)
        try:
            sockets = [conn, remote]
            while not self._stop.is_set():
                readable, _, _ = select.select(sockets, [], [], POLL_INTERVAL)
                for sock in readable:
                    data = sock.recv(BUFFER_SIZE)
                    if not data:
                        return
                    peer = remote if sock is conn else conn
                    peer.sendall(data)
        except OSError as e:
            logger.debug(f"Connection to {self.target}:{self.remote_port} closed: {e}")
        finally:
            conn.close()
            remote.close()
            error = pf.error(self.remote_port)
            if error:
                logger.error(f"Port forwarding error from {self.target}: {error}")
            pf.close()
