"""
Cluster Module - Black Box Interface

Purpose: Redis Cluster operations on pods
Interface: RedisPod (create, add-node, del-node, failover, rebalance, check,
           slots, nodes, info, config get/set, call), RebalanceOptions
Hidden: redis-cli command lines, output parsing

Resharding itself is done by redis-cli --cluster inside the pod.
"""

from .cluster import RebalanceOptions, RedisPod

__all__ = ["RebalanceOptions", "RedisPod"]
