"""
CLI interface for obsconverge.

Provides commands to run reconcile ticks against a cluster, tear the stack
down, and inspect the persisted status.

The desired stack is described by a YAML spec file; operator settings live in
$OBSCONVERGE_HOME/config.yaml (see `obsconverge init`).
"""

import json
import sys
from pathlib import Path

import click

from obsconverge import __version__
from obsconverge.config import ConfigError, OperatorConfig


EXAMPLE_SPEC = {
    "metadata": {"name": "observability-stack", "namespace": "observability"},
    "spec": {
        "prometheus_default_name": "",
        "alertmanager_default_name": "",
        "grafana_default_name": "",
        "external_sync_disabled": False,
        "observatorium_disabled": False,
        "alertmanager_config_secret": "",
        "prometheus_operator_namespace": "",
        "grafana_version": "",
        "tolerations": [],
        "resources": {},
    },
}


@click.group()
@click.version_option(version=__version__, prog_name="obsconverge")
@click.option(
    "--config",
    "config_path",
    type=click.Path(path_type=Path),
    help="Config file (default: $OBSCONVERGE_HOME/config.yaml)",
)
@click.pass_context
def main(ctx, config_path):
    """
    obsconverge - Staged convergence loop for an observability stack.

    Installs the Prometheus operator, migrates legacy resources and keeps the
    Prometheus, Alertmanager, Grafana and Promtail workloads in sync.
    """
    from obsconverge.config import load_config

    ctx.ensure_object(dict)
    try:
        ctx.obj["config"] = load_config(config_path)
    except ConfigError as e:
        # init runs without a config; other commands check ctx.obj["config"]
        ctx.obj["config_error"] = str(e)


def _require_config(ctx) -> OperatorConfig:
    from obsconverge.utils import setup_logging

    if "config" not in ctx.obj:
        click.echo(f"✗ Config not loaded: {ctx.obj.get('config_error', 'Unknown error')}", err=True)
        click.echo("Run 'obsconverge init' to create a configuration file.", err=True)
        raise SystemExit(1)

    config = ctx.obj["config"]
    setup_logging(
        config.get_log_file_path(),
        log_level=config.get_log_level(),
        log_format=config.get_log_format(),
        console_output=config.should_log_to_console(),
    )
    return config


def _build_store(config: OperatorConfig):
    from obsconverge.store import InMemoryObjectStore

    if config.get_store_backend() == "memory":
        return InMemoryObjectStore()

    from obsconverge.store.kubernetes import KubernetesObjectStore

    return KubernetesObjectStore.from_kubeconfig(
        kubeconfig=config.store.get("kubeconfig"),
        context=config.store.get("context"),
        default_timeout=float(config.store.get("request_timeout_seconds", 30)),
    )


def _build_reconciler(config: OperatorConfig):
    from obsconverge.errors import PermanentError
    from obsconverge.scheduler import Reconciler
    from obsconverge.status_store import FileStatusStore

    try:
        store = _build_store(config)
    except PermanentError as e:
        click.echo(f"✗ Could not connect to the cluster: {e}", err=True)
        raise SystemExit(1)
    return Reconciler.from_config(store, FileStatusStore(config.get_status_path()), config)


def _load_spec_or_exit(spec_file: Path):
    from obsconverge.config import load_spec
    from obsconverge.errors import PermanentError

    try:
        return load_spec(spec_file)
    except (ConfigError, PermanentError) as e:
        click.echo(f"✗ Invalid spec: {e}", err=True)
        raise SystemExit(1)


def _report(scheduled) -> None:
    from obsconverge.utils import format_duration, print_error, print_info, print_success, print_warning

    tick = scheduled.tick
    for result in tick.results:
        line = f"{result.stage_name}: {result.outcome.value}"
        if result.error_message:
            line += f" ({result.error_message})"
        click.echo(f"  {line}")

    duration = format_duration(tick.duration_seconds)
    if tick.outcome.value == "success":
        print_success(f"Converged in {duration}")
    elif tick.outcome.value == "in_progress":
        print_warning(f"Waiting at stage {tick.status.stage}")
    else:
        print_error(f"Failed at stage {tick.status.stage}: {tick.status.last_message}")

    if scheduled.requeue_after is not None:
        print_info(f"Next tick in {format_duration(scheduled.requeue_after)}")


@main.command("init")
@click.option("--force", is_flag=True, help="Overwrite existing configuration")
def init(force: bool):
    """Initialize obsconverge configuration."""
    from obsconverge.config import DEFAULT_CONFIG, get_obsconverge_home
    import yaml

    home = get_obsconverge_home()
    if not home.exists():
        home.mkdir(parents=True)

    cfg_path = home / "config.yaml"
    if cfg_path.exists() and not force:
        click.echo(f"Config already exists at {cfg_path}. Use --force to overwrite.", err=True)
        raise SystemExit(1)

    cfg_path.write_text(yaml.safe_dump(DEFAULT_CONFIG, sort_keys=False))

    spec_path = home / "spec.yaml"
    if not spec_path.exists():
        spec_path.write_text(yaml.safe_dump(EXAMPLE_SPEC, sort_keys=False))

    click.echo(f"Initialized obsconverge config at {cfg_path}")
    click.echo(f"Edit {spec_path} to describe your stack, then run `obsconverge reconcile {spec_path}`.")


@main.command("reconcile")
@click.argument("spec_file", type=click.Path(path_type=Path))
@click.pass_context
def reconcile(ctx, spec_file: Path):
    """
    Run one reconcile tick.

    SPEC_FILE is the YAML description of the observability stack.

    Examples:

        obsconverge reconcile ~/.obsconverge/spec.yaml
    """
    config = _require_config(ctx)
    spec = _load_spec_or_exit(spec_file)
    scheduled = _build_reconciler(config).run_once(spec)
    _report(scheduled)
    if scheduled.failed:
        raise SystemExit(1)


@main.command("watch")
@click.argument("spec_file", type=click.Path(path_type=Path))
@click.option("--max-ticks", type=int, default=None, help="Stop after this many ticks")
@click.pass_context
def watch(ctx, spec_file: Path, max_ticks):
    """Reconcile continuously, requeueing according to each tick's outcome."""
    from obsconverge.scheduler import run_forever

    config = _require_config(ctx)
    spec = _load_spec_or_exit(spec_file)
    reconciler = _build_reconciler(config)
    try:
        ticks = run_forever(
            reconciler,
            spec,
            max_ticks=max_ticks,
            idle_seconds=float(config.reconcile["resync_seconds"]) or 300.0,
        )
    except KeyboardInterrupt:
        click.echo("Interrupted", err=True)
        raise SystemExit(130)
    click.echo(f"Ran {ticks} tick(s)")


@main.command("cleanup")
@click.argument("spec_file", type=click.Path(path_type=Path))
@click.pass_context
def cleanup(ctx, spec_file: Path):
    """Tear down everything the stages created."""
    config = _require_config(ctx)
    spec = _load_spec_or_exit(spec_file)
    scheduled = _build_reconciler(config).cleanup(spec)
    _report(scheduled)
    if scheduled.failed:
        raise SystemExit(1)


@main.command("status")
@click.pass_context
def status(ctx):
    """Show the persisted reconcile status as JSON."""
    from obsconverge.errors import PermanentError
    from obsconverge.status_store import FileStatusStore

    config = _require_config(ctx)
    store = FileStatusStore(config.get_status_path())
    try:
        current = store.load()
    except PermanentError as e:
        click.echo(f"✗ {e}", err=True)
        raise SystemExit(1)
    click.echo(json.dumps(current.to_dict(), indent=2))


if __name__ == "__main__":
    sys.exit(main())
