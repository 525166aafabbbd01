"""Cloudock CLI - provision an OpenStack cluster and deploy Docker containers on it."""

import asyncio
import logging
import sys
from collections.abc import Awaitable
from typing import Callable, Optional, Union

import click
import structlog
from rich.console import Console
from rich.table import Table

from cloudock.core.adapters.rich_progress import RichLiveProgressSink, render_table
from cloudock.core.domain.models import CloudockError, OutcomeStatus, RunReport, Selection
from cloudock.core.domain.services.config_loader import load_config
from cloudock.core.domain.services.containers import IMAGES_HEADERS, PS_HEADERS
from cloudock.core.domain.services.nodes import NODE_HEADERS, node_row
from cloudock.core.domain.services.security import GROUP_HEADERS
from cloudock.orchestrator import Cloudock

console = Console()

Outcome = Union[RunReport, list[RunReport]]

OUTCOME_STYLES = {
    OutcomeStatus.SUCCEEDED: "green",
    OutcomeStatus.SKIPPED: "dim",
    OutcomeStatus.TIMED_OUT: "yellow",
    OutcomeStatus.ABORTED: "yellow",
}


def configure_logging(verbose: bool = False) -> None:
    """Route structlog output to stderr at INFO, or DEBUG when verbose."""
    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="%H:%M:%S"),
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.DEBUG if verbose else logging.INFO
        ),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=False,
    )


# === Rendering ===


def print_report(report: RunReport) -> None:
    """Print the outcomes of a run followed by its summary line."""
    if report.outcomes:
        table = Table(title=report.operation)
        table.add_column("Entity", style="cyan")
        table.add_column("Outcome")
        table.add_column("Detail")
        for outcome in report.outcomes:
            style = OUTCOME_STYLES.get(outcome.status, "red")
            table.add_row(outcome.entity, f"[{style}]{outcome.status.value}[/{style}]", outcome.detail)
        console.print(table)

    if report.ok:
        console.print(f"[green]✓[/green] {report.summary()}")
    else:
        console.print(f"[red]✗[/red] {report.summary()}")
        console.print(f"[red]Error:[/red] {report.error}")


def print_rows(title: str, headers: list[str], rows: list[list[str]]) -> None:
    if not rows:
        console.print(f"[yellow]No {title.lower()} found[/yellow]")
        return
    console.print(render_table(title, headers, rows))


# === Execution ===


def _run(ctx: click.Context, action: Callable[[Cloudock], Awaitable[Optional[Outcome]]]) -> None:
    """Build a Cloudock from the context, run an action, and exit non-zero on error."""
    settings = ctx.obj
    try:
        config = load_config(settings["config"], settings["secrets"])
    except CloudockError as e:
        console.print(f"[red]Configuration error:[/red] {e}")
        sys.exit(2)

    async def runner() -> Optional[Outcome]:
        cloudock = Cloudock(config, sink_factory=lambda: RichLiveProgressSink(console))
        try:
            return await action(cloudock)
        finally:
            await cloudock.close()

    try:
        outcome = asyncio.run(runner())
    except CloudockError as e:
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted[/yellow]")
        sys.exit(130)

    reports = outcome if isinstance(outcome, list) else [outcome] if outcome else []
    for report in reports:
        print_report(report)
    if any(not report.ok for report in reports):
        sys.exit(1)


def _confirm(assume_yes: bool) -> Callable[[str], bool]:
    def confirm(message: str) -> bool:
        return assume_yes or click.confirm(message, default=False)

    return confirm


def selection_options(func: Callable) -> Callable:
    """Add the --node-type/--node-id/--container-id filters to a command."""
    func = click.option("--container-id", default=None, help="Only this container or image id (prefix)")(func)
    func = click.option("--node-id", default=None, help="Only containers on this node")(func)
    func = click.option("--node-type", default=None, help="Only images of this node type")(func)
    return func


def _selection(node_type: Optional[str], node_id: Optional[str], container_id: Optional[str]) -> Selection:
    return Selection(role=node_type, node_id=node_id, entity_id=container_id)


# === Commands ===


@click.group()
@click.version_option(version="0.1.0", prog_name="Cloudock")
@click.option("--config", "-c", "config_path", default="cluster.yaml", envvar="CLOUDOCK_CONFIG", show_default=True, help="Cluster configuration file")
@click.option("--secrets", "-s", "secrets_path", default=None, envvar="CLOUDOCK_SECRETS", help="Credentials file merged over the configuration")
@click.option("--verbose", "-v", is_flag=True, help="Debug logging")
@click.pass_context
def main(ctx: click.Context, config_path: str, secrets_path: Optional[str], verbose: bool) -> None:
    """Cloudock - OpenStack cluster and Docker container orchestration."""
    configure_logging(verbose)
    ctx.ensure_object(dict)
    ctx.obj.update(config=config_path, secrets=secrets_path)


@main.group()
def node() -> None:
    """Cluster node commands."""
    pass


@node.command("create")
@click.pass_context
def node_create(ctx: click.Context) -> None:
    """Create every declared node and wait until they are running."""
    _run(ctx, lambda c: c.nodes.create())


@node.command("destroy")
@click.option("--yes", "-y", is_flag=True, help="Do not ask for confirmation")
@click.pass_context
def node_destroy(ctx: click.Context, yes: bool) -> None:
    """Destroy every node of the cluster."""
    _run(ctx, lambda c: c.nodes.destroy(_confirm(yes)))


@node.command("list")
@click.option("--status", default=None, help="Only nodes in this status (e.g. ACTIVE)")
@click.pass_context
def node_list(ctx: click.Context, status: Optional[str]) -> None:
    """List the cluster nodes."""

    async def action(c: Cloudock) -> None:
        nodes = await c.nodes.list_nodes(status)
        print_rows("Nodes", NODE_HEADERS, [node_row(n) for n in nodes])

    _run(ctx, action)


@node.command("dns")
@click.pass_context
def node_dns(ctx: click.Context) -> None:
    """Add every cluster node to /etc/hosts of each active node."""
    _run(ctx, lambda c: c.nodes.update_hosts())


@main.group()
def secgroup() -> None:
    """Security group commands."""
    pass


@secgroup.command("create")
@click.pass_context
def secgroup_create(ctx: click.Context) -> None:
    """Create the declared security groups."""
    _run(ctx, lambda c: c.security.create())


@secgroup.command("update")
@click.pass_context
def secgroup_update(ctx: click.Context) -> None:
    """Add rules to the security groups from the live node roster."""
    _run(ctx, lambda c: c.security.update())


@secgroup.command("destroy")
@click.pass_context
def secgroup_destroy(ctx: click.Context) -> None:
    """Delete the cluster security groups."""
    _run(ctx, lambda c: c.security.destroy())


@secgroup.command("list")
@click.pass_context
def secgroup_list(ctx: click.Context) -> None:
    """List the cluster security groups."""

    async def action(c: Cloudock) -> None:
        print_rows("Security groups", GROUP_HEADERS, await c.security.list_groups())

    _run(ctx, action)


@main.group()
def docker() -> None:
    """Container commands run against the active nodes."""
    pass


@docker.command("pull")
@selection_options
@click.pass_context
def docker_pull(ctx: click.Context, node_type: Optional[str], node_id: Optional[str], container_id: Optional[str]) -> None:
    """Pull the images of each node."""
    _run(ctx, lambda c: c.containers.pull(_selection(node_type, node_id, container_id)))


@docker.command("run")
@selection_options
@click.pass_context
def docker_run(ctx: click.Context, node_type: Optional[str], node_id: Optional[str], container_id: Optional[str]) -> None:
    """Create and start the containers of each node."""
    _run(ctx, lambda c: c.containers.run(_selection(node_type, node_id, container_id)))


@docker.command("ps")
@selection_options
@click.pass_context
def docker_ps(ctx: click.Context, node_type: Optional[str], node_id: Optional[str], container_id: Optional[str]) -> None:
    """List containers."""

    async def action(c: Cloudock) -> Optional[RunReport]:
        report = await c.containers.ps(_selection(node_type, node_id, container_id))
        print_rows("Containers", PS_HEADERS, report.rows)
        return None if report.ok else report

    _run(ctx, action)


@docker.command("images")
@selection_options
@click.pass_context
def docker_images(ctx: click.Context, node_type: Optional[str], node_id: Optional[str], container_id: Optional[str]) -> None:
    """List images."""

    async def action(c: Cloudock) -> Optional[RunReport]:
        report = await c.containers.images(_selection(node_type, node_id, container_id))
        print_rows("Images", IMAGES_HEADERS, report.rows)
        return None if report.ok else report

    _run(ctx, action)


@docker.command("start")
@selection_options
@click.pass_context
def docker_start(ctx: click.Context, node_type: Optional[str], node_id: Optional[str], container_id: Optional[str]) -> None:
    """Start containers."""
    _run(ctx, lambda c: c.containers.start(_selection(node_type, node_id, container_id)))


@docker.command("stop")
@selection_options
@click.pass_context
def docker_stop(ctx: click.Context, node_type: Optional[str], node_id: Optional[str], container_id: Optional[str]) -> None:
    """Stop containers."""
    _run(ctx, lambda c: c.containers.stop(_selection(node_type, node_id, container_id)))


@docker.command("rm")
@selection_options
@click.pass_context
def docker_rm(ctx: click.Context, node_type: Optional[str], node_id: Optional[str], container_id: Optional[str]) -> None:
    """Remove containers."""
    _run(ctx, lambda c: c.containers.rm(_selection(node_type, node_id, container_id)))


@docker.command("rmi")
@selection_options
@click.pass_context
def docker_rmi(ctx: click.Context, node_type: Optional[str], node_id: Optional[str], container_id: Optional[str]) -> None:
    """Remove images."""
    _run(ctx, lambda c: c.containers.rmi(_selection(node_type, node_id, container_id)))


@docker.command("test")
@click.option("--node-type", default=None, help="Only nodes of this type")
@click.option("--node-id", default=None, help="Only this node")
@click.pass_context
def docker_test(ctx: click.Context, node_type: Optional[str], node_id: Optional[str]) -> None:
    """Run the smoke tests declared on each node type."""
    _run(ctx, lambda c: c.smoke.run(_selection(node_type, node_id, None)))


@main.command()
@click.pass_context
def launch(ctx: click.Context) -> None:
    """Create security groups and nodes, then add rules and hosts entries."""
    _run(ctx, lambda c: c.launch())


@main.command()
@click.option("--yes", "-y", is_flag=True, help="Do not ask for confirmation")
@click.pass_context
def teardown(ctx: click.Context, yes: bool) -> None:
    """Destroy the nodes, then the security groups."""
    _run(ctx, lambda c: c.teardown(_confirm(yes)))


if __name__ == "__main__":
    main()
