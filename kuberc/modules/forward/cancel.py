"""
Cancellation tokens for port-forward sessions.

One process-wide token owns the SIGINT/SIGTERM handlers and fans out to every
subscribed session, so creating sessions never accumulates signal handlers.
"""

import itertools
import logging
import signal
import threading
from typing import Callable, Dict, Optional

logger = logging.getLogger("kuberc.forward.cancel")


class CancelToken:
    """A one-shot cancellation signal with subscriber callbacks."""

    def __init__(self):
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._callbacks: Dict[int, Callable[[], None]] = {}
        self._ids = itertools.count(1)

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def subscribe(self, callback: Callable[[], None]) -> int:
        """
        Register a callback run on cancel().

        Returns:
            Handle for unsubscribe()
        """
        with self._lock:
            handle = next(self._ids)
            self._callbacks[handle] = callback
            return handle

    def unsubscribe(self, handle: int) -> None:
        with self._lock:
            self._callbacks.pop(handle, None)

    def subscribers(self) -> int:
        with self._lock:
            return len(self._callbacks)

    def cancel(self) -> None:
        """Set the token and run every callback once."""
        with self._lock:
            if self._event.is_set():
                return
            self._event.set()
            callbacks = list(self._callbacks.values())
            self._callbacks.clear()

        for callback in callbacks:
            try:
                callback()
            except Exception as e:
                logger.error(f"Cancel callback failed: {e}")

    def wait(self, timeout: Optional[float] = None) -> bool:
        return self._event.wait(timeout)


_interrupt_token: Optional[CancelToken] = None
_interrupt_lock = threading.Lock()


def interrupt_token() -> CancelToken:
    """
    Get the process-wide token cancelled by SIGINT/SIGTERM.

    Handlers are installed once, and only when called from the main thread.
    The handler cancels on a background thread, then chains to the previous
    handler so KeyboardInterrupt still reaches the main thread.
    """
    global _interrupt_token
    with _interrupt_lock:
        if _interrupt_token is not None:
            return _interrupt_token

        token = CancelToken()
        if threading.current_thread() is threading.main_thread():
            for signum in (signal.SIGINT, signal.SIGTERM):
                _install_handler(signum, token)
        else:
            logger.debug("Not on main thread, interrupt handlers not installed")
        _interrupt_token = token
        return token


def _install_handler(signum: int, token: CancelToken) -> None:
    previous = signal.getsignal(signum)

    def handler(received, frame):
        logger.info(f"Received signal {received}, stopping port forwarding")
        threading.Thread(target=token.cancel, daemon=True, name="forward-cancel").start()
        if callable(previous):
            previous(received, frame)

    signal.signal(signum, handler)
