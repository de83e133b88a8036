"""
Forward Module - Black Box Interface

Purpose: Local TCP tunnels into pod containers
Interface: ForwardSession.start(), ForwardSession.stop(), check_port(), interrupt_token()
Hidden: portforward sub-resource, relay threads, signal fan-out

Sessions are single-use and stop() is safe to call any number of times.
"""

from .cancel import CancelToken, interrupt_token
from .forward import ForwardSession, SessionState, check_port

__all__ = ["CancelToken", "ForwardSession", "SessionState", "check_port", "interrupt_token"]
