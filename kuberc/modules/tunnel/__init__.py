"""
Tunnel Module - Black Box Interface

Purpose: Run shell commands inside pod containers
Interface: CommandTunnel.execute()
Hidden: exec sub-resource, websocket channel multiplexing, exit code decoding

Assumes redis-cli is already installed in the target container.
"""

from .tunnel import CommandTunnel

__all__ = ["CommandTunnel"]
