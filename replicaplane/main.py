"""
replicaplane — CLI entrypoint.

Usage:
    replicaplane --help
    replicaplane reconcile fixture.yml
    replicaplane keys fixture.yml
    replicaplane config check
    replicaplane health
"""

from __future__ import annotations

import json
import sys
from pathlib import Path

import click

from replicaplane import __version__
from replicaplane.core.config.loader import ConfigError, ControllerConfig, load_config
from replicaplane.core.observability.logging_config import setup_from_env


@click.group()
@click.version_option(version=__version__, prog_name="replicaplane")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output.")
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output.")
@click.option("--debug", is_flag=True, help="Enable debug logging (very verbose).")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=False),
    default=None,
    help="Path to replicaplane.yml (default: auto-detect).",
)
@click.pass_context
def cli(
    ctx: click.Context,
    verbose: bool,
    quiet: bool,
    debug: bool,
    config_path: str | None,
) -> None:
    """replicaplane — distribute workloads to selected clusters."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["quiet"] = quiet
    ctx.obj["debug"] = debug
    ctx.obj["config_path"] = Path(config_path) if config_path else None

    # ── Logging setup (once, at process start) ──────────────────
    flag_level = "DEBUG" if debug else "INFO" if verbose else "ERROR" if quiet else None
    config_level = None if flag_level else _config_log_level(ctx.obj["config_path"])
    setup_from_env(flag_level, config_level)


def _config_log_level(config_path: Path | None) -> str:
    # Invalid config is reported by the command that loads it.
    try:
        return load_config(config_path).log_level
    except ConfigError:
        return "WARNING"


def _load_config_or_exit(ctx: click.Context) -> ControllerConfig:
    try:
        return load_config(ctx.obj.get("config_path"))
    except ConfigError as e:
        click.secho(f"❌ {e}", fg="red")
        sys.exit(1)


# ── reconcile ───────────────────────────────────────────────────


@cli.command()
@click.argument("fixture", type=click.Path(path_type=Path))
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.option(
    "--save",
    "save_path",
    type=click.Path(path_type=Path),
    default=None,
    help="Write a JSON snapshot of the final store.",
)
@click.option(
    "--audit",
    "audit_path",
    type=click.Path(path_type=Path),
    default=None,
    help="Append one NDJSON entry per reconcile pass.",
)
@click.pass_context
def reconcile(
    ctx: click.Context,
    fixture: Path,
    as_json: bool,
    save_path: Path | None,
    audit_path: Path | None,
) -> None:
    """Reconcile the ReplicaSets of a fixture file until idle."""
    from replicaplane.core.use_cases.reconcile import run_reconcile

    config = _load_config_or_exit(ctx)
    result = run_reconcile(fixture, config=config, save_path=save_path, audit_path=audit_path)

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        sys.exit(0 if result.ok else 1)
        return

    if result.error:
        click.secho(f"❌ {result.error}", fg="red")
        sys.exit(1)

    quiet = ctx.obj.get("quiet", False)
    if not quiet:
        click.secho(f"\n🔁 Reconciled in {result.passes} passes", fg="cyan", bold=True)
        click.echo()

    if not result.replicasets:
        click.echo("   No ReplicaSets left.")

    for rs in result.replicasets:
        summary = rs.status.summary
        marker = " (deleting)" if rs.metadata.deleting else ""
        click.secho(f"   {rs.key}{marker}", fg="white", bold=True)
        click.echo(
            f"     total={summary.total} applied={summary.applied} "
            f"available={summary.available} degraded={summary.degraded} "
            f"progressing={summary.progressing}"
        )
        for ps in rs.status.placement_summaries:
            clusters = ", ".join(ps.clusters) or "-"
            click.echo(f"     • {ps.name}: {ps.summary.total} → {clusters}")
        for cond in rs.status.conditions:
            color = "green" if cond.is_true else "yellow"
            click.echo("     ", nl=False)
            click.secho(f"{cond.type}={cond.status}", fg=color, nl=False)
            click.echo(f" ({cond.reason})")

    if result.snapshot_path and not quiet:
        click.echo()
        click.echo(f"   💾 Snapshot saved to {result.snapshot_path}")

    if result.failing:
        click.echo()
        click.secho("❌ Still failing:", fg="red", bold=True)
        for key in result.failing:
            click.echo(f"   • {key}")
        click.echo()
        sys.exit(1)

    click.echo()


# ── keys ────────────────────────────────────────────────────────


@cli.command()
@click.argument("fixture", type=click.Path(path_type=Path))
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
def keys(fixture: Path, as_json: bool) -> None:
    """Show the queue keys each fixture object maps to."""
    from replicaplane.core.use_cases.trace_keys import trace_keys

    result = trace_keys(fixture)

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        sys.exit(0 if result.error is None else 1)
        return

    if result.error:
        click.secho(f"❌ {result.error}", fg="red")
        sys.exit(1)

    for trace in result.traces:
        click.echo(f"   {trace.kind} {trace.name} → ", nl=False)
        if trace.ignored:
            click.secho("(ignored)", fg="yellow")
        else:
            click.echo(", ".join(trace.keys))


# ── config ──────────────────────────────────────────────────────


@cli.group()
def config() -> None:
    """Controller configuration commands."""


@config.command("check")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def config_check(ctx: click.Context, as_json: bool) -> None:
    """Validate replicaplane.yml configuration."""
    from replicaplane.core.use_cases.config_check import check_config

    result = check_config(config_path=ctx.obj.get("config_path"))

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        sys.exit(0 if result.valid else 1)
        return

    if result.valid:
        assert result.config is not None  # guaranteed when valid
        click.secho("✅ Configuration is valid", fg="green", bold=True)
        if result.config_path:
            click.echo(f"   File: {result.config_path}")
        click.echo(f"   Workers: {result.config.workers}")
        click.echo(f"   Backoff: {result.config.base_delay}s → {result.config.max_delay}s")
    else:
        click.secho("❌ Configuration errors:", fg="red", bold=True)
        for err in result.errors:
            click.echo(f"   • {err}")

    if result.warnings:
        click.echo()
        click.secho("⚠️  Warnings:", fg="yellow")
        for warn in result.warnings:
            click.echo(f"   • {warn}")

    if not result.valid:
        click.echo()
        sys.exit(1)

    click.echo()


# ── health ──────────────────────────────────────────────────────


@cli.command()
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def health(ctx: click.Context, as_json: bool) -> None:
    """Report health of a freshly configured controller."""
    from replicaplane.adapters.memory import InMemoryStore, StaticPlacementResolver
    from replicaplane.core.engine.runner import ControllerRunner
    from replicaplane.core.observability.health import check_system_health

    config = _load_config_or_exit(ctx)
    runner = ControllerRunner(InMemoryStore(), StaticPlacementResolver(), config=config)
    result = check_system_health(queue=runner.queue, metrics=runner.metrics)

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        return

    color = {"healthy": "green", "degraded": "yellow", "unhealthy": "red"}.get(
        result.status, "white"
    )
    click.secho(f"\n💓 Controller: {result.status}", fg=color, bold=True)
    for comp in result.components:
        click.echo(f"   • {comp.name}: {comp.status} — {comp.message}")
    click.echo()


if __name__ == "__main__":
    cli()
