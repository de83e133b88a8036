"""
Kuberc - Redis Cluster and Redis Sentinel management on Kubernetes

Drives redis-cli inside pods instead of connecting to Redis directly.

Architecture:
- Each module is self-contained with clear interfaces
- Kubernetes access goes through the registry, tunnel and forward modules
- Parsers are pure functions over redis-cli / sentinel replies

Modules:
- registry: Pod lookup by name and by IP
- tunnel: Command execution inside a container
- forward: Local port-forward sessions into a container
- topology: Cluster node, slot, sentinel and INFO parsers
- cluster: Redis Cluster operations (create, add-node, rebalance, ...)
- sentinel: Redis Sentinel operations (masters, failover, sync)
"""

__version__ = "1.0.0"
