"""Main CLI entry point."""

import json
import signal
import sys
import threading
from contextlib import contextmanager
from typing import List, Optional

import click
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from cloudplane.config.parser import Config, ConfigValidationError
from cloudplane.engine import DriftType, ExecutionResult, LifecycleEngine, resources_from_config
from cloudplane.resources.base import ChangeType, ProvisionPlan
from cloudplane.resources.registry import (
    DATA_SOURCE_CLASSES,
    HANDLER_CLASSES,
    build_data_sources,
    build_handlers,
)
from cloudplane.state.manager import DEFAULT_STATE_PATH, StateManager
from cloudplane.utils.aws_client import AssumeRoleConfig, AWSClientManager
from cloudplane.utils.errors import ProviderError, error_handler
from cloudplane.utils.logging import get_logger, setup_logging

console = Console()
logger = get_logger(__name__)

CHANGE_STYLES = {
    ChangeType.CREATE: ("+", "green"),
    ChangeType.UPDATE: ("~", "yellow"),
    ChangeType.REPLACE: ("-/+", "magenta"),
    ChangeType.DELETE: ("-", "red"),
    ChangeType.NO_CHANGE: ("=", "dim"),
}


@click.group()
@click.option('--profile', help='AWS profile to use')
@click.option('--region', help='AWS region (overrides the configuration file)')
@click.option('--log-level', default='info', type=click.Choice(['debug', 'info', 'warning', 'error']))
@click.option('--config', 'config_path', default='cloudplane.yaml', help='Path to configuration file')
@click.option('--state', 'state_path', default=DEFAULT_STATE_PATH, help='Path to state file')
@click.pass_context
def cli(ctx, profile, region, log_level, config_path, state_path):
    """Declarative management of AWS resources."""
    ctx.ensure_object(dict)
    ctx.obj['profile'] = profile
    ctx.obj['region'] = region
    ctx.obj['log_level'] = log_level
    ctx.obj['config_path'] = config_path
    ctx.obj['state_path'] = state_path

    setup_logging(log_level)


def load_config(config_path: str) -> Config:
    """Load and validate configuration file."""
    try:
        config = Config(config_path)
        config.load(
            known_types=[cls.type_name for cls in HANDLER_CLASSES],
            known_data_types=[cls.type_name for cls in DATA_SOURCE_CLASSES],
            timeout_operations={cls.type_name: cls.timeout_operations for cls in HANDLER_CLASSES},
        )
        return config
    except FileNotFoundError:
        console.print(f"[red]Error:[/red] Configuration file not found: {config_path}")
        sys.exit(1)
    except ConfigValidationError as e:
        console.print("[red]Configuration validation failed:[/red]\n")
        console.print(escape(str(e)))
        sys.exit(1)


def create_engine(ctx, config: Config) -> LifecycleEngine:
    """Create the lifecycle engine with all dependencies."""
    provider = config.provider
    region = ctx.obj.get('region') or provider.region

    assume_role = None
    if provider.assume_role:
        assume_role = AssumeRoleConfig(
            role_arn=provider.assume_role.role_arn,
            session_name=provider.assume_role.session_name,
            external_id=provider.assume_role.external_id,
            duration_seconds=provider.assume_role.duration_seconds,
        )

    client_manager = AWSClientManager(
        profile=ctx.obj.get('profile') or provider.profile,
        region=region,
        assume_role_config=assume_role,
    )

    return LifecycleEngine(
        handlers=build_handlers(client_manager, provider.timeouts),
        state_manager=StateManager(ctx.obj['state_path']),
        region=region,
        data_sources=build_data_sources(client_manager),
    )


def fail(error: Exception) -> None:
    """Print an error and exit with status 1."""
    if not isinstance(error, ProviderError):
        logger.debug("Unexpected error", exc_info=error)
    provider_error = error_handler.handle_exception(error)
    console.print(f"[red]{escape(provider_error.to_user_message())}[/red]")
    sys.exit(1)


@contextmanager
def cancel_on_interrupt(cancel_event: threading.Event):
    """Turn the first Ctrl+C into a cancellation request.

    The running wait ends and remaining resources are skipped, so state for
    finished work is still saved. A second Ctrl+C interrupts immediately.
    """
    def signal_handler(sig, frame):
        if cancel_event.is_set():
            raise KeyboardInterrupt
        console.print("\n[yellow]Cancelling after the current operation (Ctrl+C again to abort)...[/yellow]")
        cancel_event.set()

    previous = signal.signal(signal.SIGINT, signal_handler)
    try:
        yield cancel_event
    finally:
        signal.signal(signal.SIGINT, previous)


def print_plan(plans: List[ProvisionPlan]) -> None:
    table = Table(title="Execution Plan")
    table.add_column("", justify="center")
    table.add_column("Resource ID", style="cyan")
    table.add_column("Type")
    table.add_column("Action")
    table.add_column("Changes")

    for plan in plans:
        symbol, style = CHANGE_STYLES[plan.change_type]
        table.add_row(
            f"[{style}]{symbol}[/{style}]",
            plan.resource.id,
            plan.resource.type,
            f"[{style}]{plan.change_type.value}[/{style}]",
            ", ".join(plan.changes),
        )
    console.print(table)

    counts = {change_type: 0 for change_type in ChangeType}
    for plan in plans:
        counts[plan.change_type] += 1
    console.print(
        f"\nPlan: {counts[ChangeType.CREATE]} to create, {counts[ChangeType.UPDATE]} to update, "
        f"{counts[ChangeType.REPLACE]} to replace, {counts[ChangeType.DELETE]} to delete."
    )


def print_result(result: ExecutionResult, title: str) -> None:
    if result.is_success():
        console.print(Panel.fit(
            f"[green]✓ {title} successful[/green]\n\n"
            f"Resources changed: {len(result.succeeded)}\n"
            f"Duration: {result.duration:.2f}s",
            title=f"{title} Complete",
            border_style="green"
        ))
        return

    outcome = "failed" if result.failed else "interrupted"
    console.print(Panel.fit(
        f"[red]✗ {title} {outcome}[/red]\n\n"
        f"Succeeded: {len(result.succeeded)}\n"
        f"Failed: {len(result.failed)}\n"
        f"Cancelled: {len(result.cancelled)}\n"
        f"Duration: {result.duration:.2f}s",
        title=f"{title} {outcome.capitalize()}",
        border_style="red"
    ))
    if result.failed:
        console.print("\n[bold]Failed Resources:[/bold]")
        for failed in result.failed:
            console.print(f"  [red]✗[/red] {failed.resource_id}: {escape(str(failed.error))}")
    if result.cancelled:
        console.print("\n[bold]Cancelled Resources:[/bold]")
        for cancelled in result.cancelled:
            console.print(f"  [yellow]-[/yellow] {cancelled.resource_id}")


@cli.command()
@click.pass_context
def plan(ctx):
    """Show the changes apply would make."""
    cfg = load_config(ctx.obj['config_path'])
    try:
        engine = create_engine(ctx, cfg)
        plans = engine.plan(resources_from_config(cfg.resources))
    except Exception as e:
        fail(e)
    print_plan(plans)


@cli.command()
@click.option('--auto-approve', is_flag=True, help='Skip confirmation prompt')
@click.pass_context
def apply(ctx, auto_approve):
    """Create, update or delete resources to match the configuration."""
    cfg = load_config(ctx.obj['config_path'])
    try:
        engine = create_engine(ctx, cfg)
        plans = engine.plan(resources_from_config(cfg.resources))
    except Exception as e:
        fail(e)

    print_plan(plans)
    if all(p.change_type == ChangeType.NO_CHANGE for p in plans):
        console.print("\n[green]No changes. Infrastructure is up-to-date.[/green]")
        return

    if not auto_approve and not click.confirm("\nApply these changes?", default=False):
        console.print("[yellow]Apply cancelled[/yellow]")
        return

    try:
        with cancel_on_interrupt(engine.cancel_event):
            result = engine.apply(plans)
    except Exception as e:
        fail(e)

    console.print()
    print_result(result, "Apply")
    if not result.is_success():
        sys.exit(1)


@cli.command()
@click.argument('resource_ids', nargs=-1)
@click.option('--yes', '-y', is_flag=True, help='Skip confirmation prompt')
@click.pass_context
def destroy(ctx, resource_ids, yes):
    """Destroy managed resources (all of them unless IDs are given)."""
    cfg = load_config(ctx.obj['config_path'])
    try:
        engine = create_engine(ctx, cfg)
        targets = list(resource_ids) or [r.id for r in engine.state.list_resources()]
    except Exception as e:
        fail(e)

    if not targets:
        console.print("[yellow]No managed resources to destroy[/yellow]")
        return

    console.print(Panel.fit(
        "[bold red]⚠ WARNING: This will destroy resources[/bold red]\n\n" + "\n".join(targets),
        title="Destruction Plan",
        border_style="red"
    ))
    if not yes and not click.confirm("Are you sure you want to destroy these resources?", default=False):
        console.print("[yellow]Destruction cancelled[/yellow]")
        return

    try:
        with cancel_on_interrupt(engine.cancel_event):
            result = engine.destroy(list(resource_ids) if resource_ids else None)
    except Exception as e:
        fail(e)

    console.print()
    print_result(result, "Destroy")
    if not result.is_success():
        sys.exit(1)


@cli.command(name='import')
@click.argument('resource_type')
@click.argument('import_id')
@click.option('--as', 'logical_id', help='Logical ID to store the resource under')
@click.pass_context
def import_cmd(ctx, resource_type, import_id, logical_id):
    """Adopt an existing AWS object into state."""
    cfg = load_config(ctx.obj['config_path'])
    try:
        engine = create_engine(ctx, cfg)
        resource = engine.import_resource(resource_type, import_id, logical_id)
    except Exception as e:
        fail(e)
    console.print(f"[green]✓ Imported[/green] {resource.type} {resource.physical_id} as [cyan]{resource.id}[/cyan]")


@cli.command()
@click.pass_context
def refresh(ctx):
    """Update state from what AWS currently reports."""
    cfg = load_config(ctx.obj['config_path'])
    try:
        engine = create_engine(ctx, cfg)
        refreshed = engine.refresh()
    except Exception as e:
        fail(e)
    console.print(f"[green]✓ Refreshed {len(refreshed)} resource(s)[/green]")


@cli.command()
@click.option('--exit-code', is_flag=True, help='Exit with status 2 when drift is found')
@click.pass_context
def drift(ctx, exit_code):
    """Report managed resources that differ from the configuration."""
    cfg = load_config(ctx.obj['config_path'])
    try:
        engine = create_engine(ctx, cfg)
        items = engine.detect_drift(resources_from_config(cfg.resources))
    except Exception as e:
        fail(e)

    if not items:
        console.print("[green]No drift detected[/green]")
        return

    table = Table(title="Drift")
    table.add_column("Resource ID", style="cyan")
    table.add_column("Type")
    table.add_column("Drift")
    table.add_column("Differences")
    for item in items:
        style = "red" if item.drift_type == DriftType.MISSING else "yellow"
        table.add_row(
            item.resource_id,
            item.resource_type,
            f"[{style}]{item.drift_type.value}[/{style}]",
            "\n".join(item.differences),
        )
    console.print(table)

    if exit_code:
        sys.exit(2)


@cli.command()
@click.option('--json', 'as_json', is_flag=True, help='Print results as JSON')
@click.pass_context
def data(ctx, as_json):
    """Evaluate data source lookups."""
    cfg = load_config(ctx.obj['config_path'])
    try:
        engine = create_engine(ctx, cfg)
        results = engine.read_data(cfg.data_sources)
    except Exception as e:
        fail(e)

    if as_json:
        click.echo(json.dumps({key: r.properties for key, r in results.items()}, indent=2))
        return

    for source_id, resource in results.items():
        table = Table(title=f"{source_id} ({resource.type})")
        table.add_column("Attribute", style="cyan")
        table.add_column("Value")
        for name, value in resource.properties.items():
            table.add_row(name, ", ".join(value) if isinstance(value, list) else str(value))
        console.print(table)


def main(argv: Optional[List[str]] = None) -> None:
    cli(args=argv, obj={})


if __name__ == '__main__':
    main()
