"""
cairn CLI - Command-line interface for the event-notices stack.
"""

import functools
import json
import sys
from dataclasses import dataclass

import click

from cairn import __version__
from cairn.config import CairnConfig, load_config
from cairn.core.policy import grants_public_read
from cairn.engine.local import LocalCloudProvider
from cairn.engine.reconciler import Reconciler
from cairn.engine.state import LocalStateBackend
from cairn.errors import CairnError
from cairn.observability import configure_logging
from cairn.resources.types import BUCKET_POLICY
from cairn.stacks.notifier import EventNoticesStack, declare_event_notices, default_packages


@dataclass
class CliContext:
    config: CairnConfig
    config_path: str | None
    functions_dir: str


def handle_errors(command):
    """Report CairnError as a one-line failure and exit 1."""

    @functools.wraps(command)
    def wrapper(*args, **kwargs):
        try:
            return command(*args, **kwargs)
        except CairnError as e:
            click.echo(f"✗ {e}", err=True)
            sys.exit(1)

    return wrapper


@click.group()
@click.version_option(version=__version__)
@click.option("--config", "config_path", type=click.Path(), default=None, help="Path to cairn.yaml")
@click.option("--region", default=None, help="Override the configured region")
@click.option(
    "--functions-dir",
    default="functions",
    show_default=True,
    help="Handler sources, zipped when no built package exists",
)
@click.pass_context
def cli(ctx: click.Context, config_path: str | None, region: str | None, functions_dir: str):
    """
    cairn - Declarative resource graph for the event-notices stack.

    Declare storage, messaging, compute and an HTTP API as one graph;
    cairn plans the diff and converges the account to it.
    """
    try:
        config = load_config(config_path, region=region)
    except CairnError as e:
        click.echo(f"✗ {e}", err=True)
        sys.exit(1)

    configure_logging(config.log_level, config.log_format)
    ctx.obj = CliContext(config=config, config_path=config_path, functions_dir=functions_dir)


@cli.command()
@click.pass_obj
@handle_errors
def validate(obj: CliContext):
    """
    Validate the declaration without touching any provider.

    Checks references, duplicate names, cycles, policy documents and
    invoke-permission bindings.

    Example:
        cairn validate
    """
    declared = _declare(obj)
    graph = declared.build()

    click.echo(f"✓ Declaration is valid: {len(graph)} resources, {len(graph.outputs)} outputs")
    for node in graph:
        if node.type == BUCKET_POLICY and grants_public_read(node.attributes["policy"]):
            click.echo(f"! {node.key} grants anonymous read access to every object")


@cli.command()
@click.option("--format", type=click.Choice(["text", "json", "mermaid"]), default="text")
@click.pass_obj
@handle_errors
def graph(obj: CliContext, format: str):
    """
    Display the resource graph.

    Example:
        cairn graph
        cairn graph --format mermaid
    """
    resource_graph = _declare(obj).build()

    if format == "json":
        output = {
            "stack": obj.config.project,
            "order": resource_graph.keys(),
            "levels": [[str(node.key) for node in level] for level in resource_graph.levels()],
            "dag": resource_graph.dag.to_dict(),
        }
        click.echo(json.dumps(output, indent=2))

    elif format == "mermaid":
        click.echo("```mermaid")
        click.echo("graph TD")
        for key in resource_graph.keys():
            for dependency in resource_graph.dependencies(key):
                click.echo(f'  "{dependency}" --> "{key}"')
        click.echo("```")

    else:
        click.echo(f"\n Stack: {obj.config.project} ({obj.config.region})")
        click.echo(f"{'=' * 50}")
        click.echo(f"\n Resources: {len(resource_graph)}")
        for i, level in enumerate(resource_graph.levels(), 1):
            click.echo(f"\n Level {i}:")
            for node in level:
                click.echo(f"  - {node.key}")
        click.echo(f"\n Outputs: {', '.join(sorted(resource_graph.outputs))}")


@cli.command()
@click.option("--refresh/--no-refresh", default=True, help="Check for drift before planning")
@click.pass_obj
@handle_errors
def plan(obj: CliContext, refresh: bool):
    """
    Show the planned changes (dry run, no mutating calls).

    Example:
        cairn plan
    """
    graph = _declare(obj).build()
    computed = _reconciler(obj.config).plan(graph, refresh=refresh)
    click.echo(computed.render())


@cli.command()
@click.option("--auto-approve", is_flag=True, help="Skip the confirmation prompt")
@click.option("--refresh/--no-refresh", default=True, help="Check for drift before planning")
@click.pass_obj
@handle_errors
def apply(obj: CliContext, auto_approve: bool, refresh: bool):
    """
    Converge the account to the declaration.

    Example:
        cairn apply
        cairn apply --auto-approve
    """
    graph = _declare(obj).build()
    reconciler = _reconciler(obj.config)

    computed = reconciler.plan(graph, refresh=refresh)
    click.echo(computed.render())
    if not computed.has_changes:
        return
    if not auto_approve:
        click.confirm("\nApply these changes?", abort=True)

    result = reconciler.apply(graph, computed)

    for key, error in result.failed.items():
        click.echo(f"✗ {key}: {error}", err=True)
    for key in result.skipped:
        click.echo(f"- {key}: skipped (a dependency failed)", err=True)

    click.echo(
        f"\nApply complete! Resources: {result.count('create')} added, "
        f"{result.count('update')} changed, {result.count('replace')} replaced, "
        f"{result.count('destroy')} destroyed."
    )
    _echo_outputs(result.outputs)

    if not result.ok:
        sys.exit(1)


@cli.command()
@click.pass_obj
@handle_errors
def refresh(obj: CliContext):
    """
    Compare recorded state with the account and report drift.

    Drift is never resolved automatically; re-declare or re-apply.

    Example:
        cairn refresh
    """
    reconciler = _reconciler(obj.config)
    reconciler.refresh()
    count = len(reconciler.backend.read().resources)
    click.echo(f"✓ No drift: {count} resources match recorded state")


@cli.command()
@click.option("--auto-approve", is_flag=True, help="Skip the confirmation prompt")
@click.pass_obj
@handle_errors
def destroy(obj: CliContext, auto_approve: bool):
    """
    Destroy every resource recorded in state.

    Example:
        cairn destroy --auto-approve
    """
    reconciler = _reconciler(obj.config)
    count = len(reconciler.backend.read().resources)
    if count == 0:
        click.echo("Nothing to destroy.")
        return
    if not auto_approve:
        click.confirm(f"Destroy {count} resources?", abort=True)

    result = reconciler.destroy()
    for key, error in result.failed.items():
        click.echo(f"✗ {key}: {error}", err=True)
    click.echo(f"\nDestroy complete! Resources: {result.count('destroy')} destroyed.")

    if not result.ok:
        sys.exit(1)


@cli.command()
@click.option("--json", "as_json", is_flag=True, help="Print outputs as JSON")
@click.pass_obj
@handle_errors
def outputs(obj: CliContext, as_json: bool):
    """
    Show the public outputs of the last apply.

    Example:
        cairn outputs --json
    """
    recorded = LocalStateBackend(obj.config.state_path).read().outputs
    if as_json:
        click.echo(json.dumps(recorded, indent=2, sort_keys=True))
    else:
        _echo_outputs(recorded)


@cli.command()
@click.option("--stack", default="dev", show_default=True, help="Pulumi stack name")
@click.option("--output-dir", default=".cairn/pulumi", show_default=True, help="Pulumi program directory")
@click.option("--auto-approve", is_flag=True, help="Pass --yes to pulumi up")
@click.pass_obj
@handle_errors
def deploy(obj: CliContext, stack: str, output_dir: str, auto_approve: bool):
    """
    Deploy to a real account with Pulumi.

    Requires the pulumi extra and the pulumi CLI.

    Example:
        cairn deploy --stack prod
    """
    from cairn.cli.deploy import DeploymentCLI

    # Fail on a bad declaration before handing over to pulumi
    _declare(obj).build()

    DeploymentCLI().deploy_stack(
        project=obj.config.project,
        output_dir=output_dir,
        config_path=obj.config_path,
        functions_dir=obj.functions_dir,
        stack=stack,
        auto_approve=auto_approve,
    )


def _declare(obj: CliContext) -> EventNoticesStack:
    packages = default_packages(obj.config, obj.functions_dir)
    return declare_event_notices(obj.config, packages)


def _reconciler(config: CairnConfig) -> Reconciler:
    provider = LocalCloudProvider(
        region=config.region,
        account_id=config.account_id,
        path=config.cloud_path,
    )
    return Reconciler(provider, LocalStateBackend(config.state_path), parallelism=config.parallelism)


def _echo_outputs(values: dict) -> None:
    if not values:
        return
    click.echo("\nOutputs:")
    for name in sorted(values):
        click.echo(f"  {name} = {values[name]}")


if __name__ == "__main__":
    cli()
