"""
Sentinel Module - Black Box Interface

Purpose: Inspect and operate a Redis Sentinel topology on pods
Interface: SentinelPod.masters(), master(), slaves(), failover(), sync()
Hidden: Port-forwarded sentinel client, redis-cli replication checks
"""

from .sentinel import RedisInstance, SentinelPod, sync

__all__ = ["RedisInstance", "SentinelPod", "sync"]
