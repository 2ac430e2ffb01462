"""
tofuplane — CLI entrypoint.

Usage:
    python -m tofuplane.main --help
    python -m tofuplane.main apply -f module.yaml
    python -m tofuplane.main reconcile
    python -m tofuplane.main get executions
    python -m tofuplane.main run --workers 4
"""

from __future__ import annotations

import json
import os
import sys
from pathlib import Path

import click

from tofuplane import __version__
from tofuplane.core.config.settings import DEFAULT_PATHS, Settings, SettingsError
from tofuplane.core.observability.logging_config import setup_logging
from tofuplane.core.observability.metrics import MetricsRegistry
from tofuplane.core.persistence.store import ResourceStore

_PHASE_COLORS = {
    "Succeeded": "green",
    "Failed": "red",
    "Running": "yellow",
    "Pending": "white",
}


@click.group()
@click.version_option(version=__version__, prog_name="tofuplane")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output.")
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output.")
@click.option("--debug", is_flag=True, help="Enable debug logging (very verbose).")
@click.option(
    "--state",
    "state_path",
    type=click.Path(dir_okay=False),
    default=None,
    help="State file of the local store (default: .state/resources.json).",
)
@click.option("--kubectl", "use_kubectl", is_flag=True, help="Use the cluster via kubectl.")
@click.option(
    "--settings",
    "settings_paths",
    type=click.Path(dir_okay=False),
    multiple=True,
    help="Settings YAML file; repeat to layer files (default: config.yaml).",
)
@click.pass_context
def cli(
    ctx: click.Context,
    verbose: bool,
    quiet: bool,
    debug: bool,
    state_path: str | None,
    use_kubectl: bool,
    settings_paths: tuple[str, ...],
) -> None:
    """tofuplane — reconcile OpenTofu/Terraform modules into Jobs."""
    ctx.ensure_object(dict)
    ctx.obj["quiet"] = quiet
    ctx.obj["state_path"] = Path(state_path) if state_path else None
    ctx.obj["use_kubectl"] = use_kubectl
    ctx.obj["settings_paths"] = [Path(p) for p in settings_paths]

    # ── Logging setup (once, at process start) ──────────────────
    if debug:
        level = "DEBUG"
    elif verbose:
        level = "INFO"
    elif quiet:
        level = "ERROR"
    else:
        level = os.environ.get("TOFUPLANE_LOG_LEVEL", "WARNING")

    setup_logging(
        level=level,
        log_file=os.environ.get("TOFUPLANE_LOG_FILE"),
        log_file_level=os.environ.get("TOFUPLANE_LOG_FILE_LEVEL"),
        log_format=os.environ.get("TOFUPLANE_LOG_FORMAT"),
    )


# ── Helpers ──────────────────────────────────────────────────────


def _open_store(ctx: click.Context) -> ResourceStore:
    if ctx.obj.get("use_kubectl"):
        from tofuplane.adapters.kubectl import KubectlStore

        return KubectlStore()

    from tofuplane.core.persistence.memory_store import MemoryStore, default_store_path

    return MemoryStore(path=ctx.obj.get("state_path") or default_store_path(Path.cwd()))


def _settings_paths(ctx: click.Context) -> list[Path]:
    """Explicit --settings files, else config.yaml when it exists."""
    paths = ctx.obj.get("settings_paths") or []
    if paths:
        return paths
    return [Path(p) for p in DEFAULT_PATHS if Path(p).is_file()]


def _load_settings(ctx: click.Context, metrics: MetricsRegistry, watch: bool = False) -> Settings:
    settings = Settings(metrics=metrics)
    try:
        settings.init(_settings_paths(ctx), watch=watch)
    except SettingsError as e:
        click.secho(f"❌ {e}", fg="red", err=True)
        sys.exit(1)
    return settings


# ── Commands ─────────────────────────────────────────────────────


@cli.command()
@click.option(
    "--filename",
    "-f",
    "filename",
    type=click.Path(exists=True, dir_okay=False),
    required=True,
    help="Manifest YAML to apply.",
)
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def apply(ctx: click.Context, filename: str, as_json: bool) -> None:
    """Create or update resources from a manifest."""
    from tofuplane.core.use_cases.apply import apply_manifest

    result = apply_manifest(_open_store(ctx), Path(filename))

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        sys.exit(0 if result.ok else 1)

    for label in result.created:
        click.secho(f"✅ {label} created", fg="green")
    for label in result.updated:
        click.secho(f"🔄 {label} configured", fg="cyan")
    for label in result.unchanged:
        click.echo(f"   {label} unchanged")
    for err in result.errors:
        click.secho(f"❌ {err}", fg="red")

    if not result.ok:
        sys.exit(1)


@cli.command()
@click.argument("kind")
@click.option("--namespace", "-n", default=None, help="Only this namespace.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def get(ctx: click.Context, kind: str, namespace: str | None, as_json: bool) -> None:
    """List resources of KIND (modules, executions, stacks, jobs)."""
    from tofuplane.core.use_cases.status import get_resources

    try:
        listing = get_resources(_open_store(ctx), kind, namespace)
    except ValueError as e:
        click.secho(f"❌ {e}", fg="red", err=True)
        sys.exit(2)

    if as_json:
        click.echo(json.dumps(listing.to_dict(), indent=2))
        return

    if not listing.rows:
        click.echo(f"No {listing.kind} resources found.")
        return

    click.secho(f"{'NAMESPACE':<16}{'NAME':<36}{'PHASE':<12}DETAIL", bold=True)
    for row in listing.rows:
        click.echo(f"{row.namespace:<16}{row.name:<36}", nl=False)
        click.secho(f"{row.phase:<12}", fg=_PHASE_COLORS.get(row.phase, "white"), nl=False)
        click.echo(row.detail)


@cli.command()
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def reconcile(ctx: click.Context, as_json: bool) -> None:
    """Run one reconcile round over everything in the store."""
    from tofuplane.core.engine.manager import create_manager

    metrics = MetricsRegistry()
    settings = _load_settings(ctx, metrics)
    manager = create_manager(_open_store(ctx), settings, metrics=metrics)
    summary = manager.run_once()

    if as_json:
        click.echo(json.dumps({**summary.to_dict(), "metrics": metrics.to_dict()}, indent=2))
        sys.exit(0 if summary.errors == 0 else 1)

    if not ctx.obj.get("quiet"):
        click.echo(f"Processed {summary.processed} reconciles, {summary.delayed} waiting")
    if summary.errors:
        click.secho(f"⚠️  {summary.errors} reconciles failed (see logs)", fg="yellow")
        sys.exit(1)


@cli.command()
@click.option("--workers", default=2, show_default=True, type=click.IntRange(min=1))
@click.option(
    "--resync",
    "resync",
    type=float,
    default=None,
    help="Re-queue everything every N seconds (default: 30 with --kubectl).",
)
@click.option("--watch-settings/--no-watch-settings", default=True, show_default=True)
@click.pass_context
def run(ctx: click.Context, workers: int, resync: float | None, watch_settings: bool) -> None:
    """Run the controllers until interrupted."""
    from tofuplane.core.engine.manager import create_manager

    metrics = MetricsRegistry()
    settings = _load_settings(ctx, metrics, watch=watch_settings)
    store = _open_store(ctx)
    if resync is None and not store.emits_events:
        resync = 30.0

    manager = create_manager(
        store, settings, workers=workers, resync_period=resync, metrics=metrics
    )
    manager.start()
    if not ctx.obj.get("quiet"):
        click.echo(f"tofuplane {__version__} running with {workers} workers (Ctrl-C to stop)")
    try:
        while not manager.wait(1.0):
            pass
    except KeyboardInterrupt:
        click.echo()
    finally:
        manager.stop()
        settings.stop()

    if not ctx.obj.get("quiet"):
        click.echo(metrics.render_text())


@cli.group("settings")
def settings_group() -> None:
    """Controller settings commands."""


@settings_group.command("check")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def settings_check(ctx: click.Context, as_json: bool) -> None:
    """Validate the settings files."""
    from tofuplane.core.use_cases.settings_check import check_settings

    result = check_settings(_settings_paths(ctx))

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        sys.exit(0 if result.valid else 1)

    if result.valid:
        assert result.settings is not None  # guaranteed when valid
        click.secho("✅ Settings are valid", fg="green", bold=True)
        click.echo(f"   Default image: {result.settings.execution.default_image}")
    else:
        click.secho("❌ Settings errors:", fg="red", bold=True)
        for err in result.errors:
            click.echo(f"   • {err}")

    if result.warnings:
        click.secho("⚠️  Warnings:", fg="yellow")
        for warn in result.warnings:
            click.echo(f"   • {warn}")

    if not result.valid:
        sys.exit(1)


def main() -> None:
    cli(obj={})


if __name__ == "__main__":
    main()
