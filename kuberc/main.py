"""
Command line entry points for kuberc.

``kuberc`` manages a Redis Cluster running on pods, ``kuberc-sen`` inspects
and operates a Redis Sentinel setup. Both are thin wrappers over the modules
under kuberc.modules.
"""

import logging
import sys
from typing import Optional

import click
from dotenv import load_dotenv
from kubernetes import client
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from kuberc.config import KubercConfig, load_config
from kuberc.errors import KubercError, TunnelError
from kuberc.logging_config import configure_logging
from kuberc.modules.cluster import RebalanceOptions, RedisPod
from kuberc.modules.registry import PodRegistry, load_core_api
from kuberc.modules.sentinel import SentinelPod, sync
from kuberc.modules.topology import coverage_gaps, group_by_master
from kuberc.modules.tunnel import CommandTunnel

load_dotenv()

logger = logging.getLogger("kuberc.main")

console = Console()
err_console = Console(stderr=True)


class AppContext:
    """Configuration plus lazily created Kubernetes clients for one invocation."""

    def __init__(self, config: KubercConfig, namespace: str):
        self.config = config
        self.namespace = namespace
        self._api: Optional[client.CoreV1Api] = None
        self._registry: Optional[PodRegistry] = None
        self._tunnel: Optional[CommandTunnel] = None

    @property
    def api(self) -> client.CoreV1Api:
        if self._api is None:
            self._api = load_core_api(self.config.kube)
        return self._api

    @property
    def registry(self) -> PodRegistry:
        if self._registry is None:
            self._registry = PodRegistry(self.api, self.namespace)
        return self._registry

    @property
    def tunnel(self) -> CommandTunnel:
        if self._tunnel is None:
            self._tunnel = CommandTunnel(self.api)
        return self._tunnel

    def redis_pod(self, name: str) -> RedisPod:
        return RedisPod.resolve(self.tunnel, self.registry, name, self.config.cluster)

    def cluster_pods(self, name: str, all_pods: bool) -> list:
        """The named pod, or every member of its cluster."""
        pod = self.redis_pod(name)
        return pod.cluster_pods() if all_pods else [pod]

    def sentinel_pod(self, name: str) -> SentinelPod:
        return SentinelPod.resolve(
            self.api,
            self.tunnel,
            self.registry,
            name,
            self.config.sentinel,
            forward_settings=self.config.forward,
        )


class KubercGroup(click.Group):
    """Click group printing kuberc errors instead of tracebacks."""

    def invoke(self, ctx):
        try:
            return super().invoke(ctx)
        except KubercError as e:
            if isinstance(e, TunnelError) and e.output:
                click.echo(e.output, err=True)
            err_console.print(f"[red]Error:[/red] {escape(str(e))}", soft_wrap=True)
            logger.debug("Command failed", exc_info=True)
            ctx.exit(1)


def _echo_result(name: str, result: str) -> None:
    click.echo(f">>> {name}:")
    click.echo(result.rstrip("\n"))


# Redis Cluster


@click.group(cls=KubercGroup)
@click.option("--namespace", "-n", default=None, help="Redis pod namespace")
@click.option("--container", "-c", default=None, help="Redis container name")
@click.option("--port", "-p", type=int, default=None, help="Redis port")
@click.option("--kubeconfig", default=None, help="Kubeconfig file, defaults to $KUBECONFIG")
@click.option("--context", "kube_context", default=None, help="Kubeconfig context")
@click.option("--config", "config_path", default=None, help="kuberc YAML config file")
@click.option("--log-level", default=None, help="Log level (DEBUG, INFO, ...)")
@click.pass_context
def cli(ctx, namespace, container, port, kubeconfig, kube_context, config_path, log_level):
    """Manage redis cluster on k8s."""
    config = load_config(
        config_path,
        kube={"kubeconfig": kubeconfig, "context": kube_context},
        cluster={"namespace": namespace, "container": container, "redis_port": port},
    )
    configure_logging(log_level or config.log_level)
    ctx.obj = AppContext(config, config.cluster.namespace)


@cli.command()
@click.argument("pods", nargs=-1, required=True)
@click.option("--replicas", type=int, default=0, help="Slaves per master")
@click.option("--yes", is_flag=True, help="Accept the proposed layout without asking")
@click.pass_obj
def create(app: AppContext, pods, replicas, yes):
    """Create a redis cluster from PODS."""
    first, *rest = [app.redis_pod(name) for name in pods]
    first.cluster_create(rest, replicas=replicas, yes=yes)


@cli.command("add-node")
@click.argument("new_pod")
@click.argument("existing_pod")
@click.option("--slave", is_flag=True, help="Add NEW_POD as a slave of EXISTING_POD")
@click.pass_obj
def add_node(app: AppContext, new_pod, existing_pod, slave):
    """Add NEW_POD to the cluster EXISTING_POD belongs to."""
    pod = app.redis_pod(new_pod)
    existing = app.redis_pod(existing_pod)
    click.echo(pod.cluster_add_node(existing, slave=slave))


@cli.command("del-node")
@click.argument("pod_to_delete")
@click.option("--entry-pod", default=None, help="Send del-node through this pod instead")
@click.pass_obj
def del_node(app: AppContext, pod_to_delete, entry_pod):
    """Delete POD_TO_DELETE from its redis cluster."""
    pod = app.redis_pod(pod_to_delete)
    node_id = pod.node_id()
    entry = app.redis_pod(entry_pod) if entry_pod else pod
    click.echo(entry.cluster_del_node(node_id))


@cli.command()
@click.argument("pod")
@click.option("--force", is_flag=True, help="Failover without master agreement")
@click.option("--takeover", is_flag=True, help="Failover without cluster consensus")
@click.pass_obj
def failover(app: AppContext, pod, force, takeover):
    """Promote slave POD to master."""
    click.echo(app.redis_pod(pod).cluster_failover(force, takeover))


@cli.command()
@click.argument("pod")
@click.option("--weight", default="", help="Pod weights, e.g. redis-0=1,redis-1=2")
@click.option("--use-empty-masters", is_flag=True, help="Assign slots to empty masters")
@click.option("--timeout", type=int, default=60000, show_default=True, help="Migrate timeout in ms")
@click.option("--simulate", is_flag=True, help="Only show the planned moves")
@click.option("--pipeline", type=int, default=10, show_default=True, help="Keys per migrate batch")
@click.option("--threshold", type=int, default=2, show_default=True, help="Rebalance threshold")
@click.option("--replace", is_flag=True, help="Replace existing keys on migrate")
@click.pass_obj
def rebalance(app: AppContext, pod, weight, use_empty_masters, timeout, simulate, pipeline,
              threshold, replace):
    """Rebalance slots across the masters of POD's cluster."""
    options = RebalanceOptions(
        weights=RebalanceOptions.parse_weights(weight),
        use_empty_masters=use_empty_masters,
        timeout=timeout,
        simulate=simulate,
        pipeline=pipeline,
        threshold=threshold,
        replace=replace,
    )
    options.validate()
    app.redis_pod(pod).cluster_rebalance(options)


@cli.command()
@click.argument("pod")
@click.pass_obj
def check(app: AppContext, pod):
    """Check the cluster POD belongs to."""
    click.echo(app.redis_pod(pod).cluster_check())


@cli.command()
@click.argument("pod")
@click.pass_obj
def slots(app: AppContext, pod):
    """Show slot ranges with their master and slaves."""
    ranges = app.redis_pod(pod).cluster_slots()

    table = Table(title="Cluster Slots")
    table.add_column("slots", style="cyan")
    table.add_column("master", style="green")
    table.add_column("slaves", style="yellow")
    for r in sorted(ranges, key=lambda r: r.start):
        table.add_row(
            f"{r.start}-{r.end}",
            r.master.name,
            ", ".join(s.name for s in r.slaves),
        )
    console.print(table)

    for lo, hi in coverage_gaps(ranges):
        err_console.print(f"[yellow]Warning:[/yellow] slots {lo}-{hi} are not covered")


@cli.command()
@click.argument("pod")
@click.pass_obj
def nodes(app: AppContext, pod):
    """Show cluster nodes grouped by master."""
    for master, slaves in group_by_master(app.redis_pod(pod).cluster_nodes()):
        if master is not None:
            click.echo(f"Master: {master}")
        for node in slaves:
            click.echo(f"\t Slave: {node}")


@cli.command()
@click.argument("pod")
@click.pass_obj
def info(app: AppContext, pod):
    """Show CLUSTER INFO of POD."""
    click.echo(app.redis_pod(pod).cluster_info())


@cli.command("config-set")
@click.argument("pod")
@click.argument("key")
@click.argument("value")
@click.option("--all", "all_pods", is_flag=True, help="Set on every redis node")
@click.pass_obj
def config_set(app: AppContext, pod, key, value, all_pods):
    """Set a config value on POD."""
    for p in app.cluster_pods(pod, all_pods):
        _echo_result(p.name, p.config_set(key, value))


@cli.command()
@click.argument("pod")
@click.argument("args", nargs=-1, required=True)
@click.option("--all", "all_pods", is_flag=True, help="Run on every redis node")
@click.pass_obj
def call(app: AppContext, pod, args, all_pods):
    """Run a redis command on POD."""
    for p in app.cluster_pods(pod, all_pods):
        _echo_result(p.name, p.call(*args))


# Redis Sentinel


@click.group(cls=KubercGroup)
@click.option("--namespace", "-n", default=None, help="Sentinel pod namespace")
@click.option("--container", "-c", default=None, help="Sentinel container name")
@click.option("--port", "-p", type=int, default=None, help="Sentinel port")
@click.option("--redis-port", type=int, default=None, help="Redis port")
@click.option("--redis-container", default=None, help="Redis container name")
@click.option("--local-port", type=int, default=None, help="Local port for forwarding, 0 picks one")
@click.option("--kubeconfig", default=None, help="Kubeconfig file, defaults to $KUBECONFIG")
@click.option("--context", "kube_context", default=None, help="Kubeconfig context")
@click.option("--config", "config_path", default=None, help="kuberc YAML config file")
@click.option("--log-level", default=None, help="Log level (DEBUG, INFO, ...)")
@click.pass_context
def sen(ctx, namespace, container, port, redis_port, redis_container, local_port, kubeconfig,
        kube_context, config_path, log_level):
    """Manage redis-sentinel on k8s."""
    config = load_config(
        config_path,
        kube={"kubeconfig": kubeconfig, "context": kube_context},
        sentinel={
            "namespace": namespace,
            "container": container,
            "sentinel_port": port,
            "redis_port": redis_port,
            "redis_container": redis_container,
            "local_port": local_port,
        },
    )
    configure_logging(log_level or config.log_level)
    ctx.obj = AppContext(config, config.sentinel.namespace)


@sen.command()
@click.argument("sentinel_pod")
@click.pass_obj
def masters(app: AppContext, sentinel_pod):
    """List masters monitored by SENTINEL_POD."""
    records = app.sentinel_pod(sentinel_pod).masters()

    table = Table(title="Sentinel Masters")
    table.add_column("name", style="cyan")
    table.add_column("pod", style="green")
    table.add_column("ip")
    table.add_column("flags", style="yellow")
    table.add_column("slaves", style="magenta")
    for m in records:
        table.add_row(m.node.name, m.node.pod_name, m.node.ip, m.node.flags, str(m.num_slaves))
    console.print(table)


@sen.command()
@click.argument("sentinel_pod")
@click.argument("name")
@click.pass_obj
def master(app: AppContext, sentinel_pod, name):
    """Show master NAME and the sync state of its slaves."""
    record = app.sentinel_pod(sentinel_pod).master(name)
    lines = [
        f"Master Name: {record.node.name}",
        f"Master Pod: {record.node.pod_name}",
        f"IP: {record.node.ip}",
        f"Flags: {record.node.flags}",
        f"Num Slaves {record.num_slaves}",
        "Slaves:",
    ]
    lines.extend(slave.describe() for slave in record.slaves)
    for line in lines:
        click.echo(line)


@sen.command("failover")
@click.argument("sentinel_pod")
@click.argument("name")
@click.pass_obj
def sen_failover(app: AppContext, sentinel_pod, name):
    """Force a sentinel failover of master NAME."""
    click.echo(app.sentinel_pod(sentinel_pod).failover(name))


@sen.command("sync")
@click.argument("slave_pod")
@click.argument("master_pod")
@click.pass_obj
def sen_sync(app: AppContext, slave_pod, master_pod):
    """Make SLAVE_POD a slave of MASTER_POD."""
    result = sync(app.tunnel, app.registry, slave_pod, master_pod, app.config.sentinel)
    click.echo(result)


def main():
    cli()


def sen_main():
    sen()


if __name__ == "__main__":
    sys.exit(main())
