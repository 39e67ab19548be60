"""
hostprov — CLI entrypoint.

Usage:
    hostprov run [PLAYBOOK]
    hostprov plan [PLAYBOOK]
    hostprov check [PLAYBOOK]
    hostprov status
    hostprov log [RUN_ID]

Exit codes: 0 success (warnings allowed), 1 aborted by a failing step,
2 invalid invocation or configuration, 3 interrupted.
"""

from __future__ import annotations

import json
import os
import sys
from pathlib import Path

import click

from hostprov import __version__
from hostprov.core.observability.logging_config import setup_logging
from hostprov.core.persistence.run_log import EXIT_INVALID
from hostprov.core.persistence.state_file import DEFAULT_STATE_DIR

_PLAYBOOK_ARG = click.argument(
    "playbook", required=False, type=click.Path(dir_okay=False, path_type=Path)
)


def _parse_vars(pairs: tuple[str, ...]) -> dict[str, str]:
    values = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise click.BadParameter(f"expected KEY=VALUE, got '{pair}'", param_hint="--var")
        values[key.strip()] = value
    return values


@click.group()
@click.version_option(version=__version__, prog_name="hostprov")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output.")
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output.")
@click.option("--debug", is_flag=True, help="Enable debug logging (very verbose).")
@click.option(
    "--state-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=DEFAULT_STATE_DIR,
    envvar="HOSTPROV_STATE_DIR",
    show_default=True,
    help="Where run logs and the last-run state live.",
)
@click.pass_context
def cli(ctx: click.Context, verbose: bool, quiet: bool, debug: bool, state_dir: Path) -> None:
    """hostprov — declarative, idempotent host provisioning."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["quiet"] = quiet
    ctx.obj["debug"] = debug
    ctx.obj["state_dir"] = state_dir

    # ── Logging setup (once, at process start) ──────────────────
    if debug:
        level = "DEBUG"
    elif verbose:
        level = "INFO"
    elif quiet:
        level = "ERROR"
    else:
        level = os.environ.get("HOSTPROV_LOG_LEVEL", "WARNING")

    setup_logging(
        level=level,
        log_file=os.environ.get("HOSTPROV_LOG_FILE"),
        log_file_level=os.environ.get("HOSTPROV_LOG_FILE_LEVEL"),
        quiet_third_party=not debug,
    )


# ── run ─────────────────────────────────────────────────────────


@cli.command()
@_PLAYBOOK_ARG
@click.option("--site-name", envvar="HOSTPROV_SITE_NAME", default=None, help="Site name (skips its prompt).")
@click.option(
    "--skip-backup-confirmation",
    is_flag=True,
    envvar="HOSTPROV_SKIP_BACKUP_CONFIRMATION",
    help="Don't ask for backup confirmation.",
)
@click.option(
    "--non-interactive",
    is_flag=True,
    envvar="HOSTPROV_NON_INTERACTIVE",
    help="Never prompt; read values from HOSTPROV_SECRET_* variables.",
)
@click.option("--dry-run", is_flag=True, help="Probe only; show what would run.")
@click.option(
    "--abort-scope",
    type=click.Choice(["run", "dependents"]),
    default="run",
    envvar="HOSTPROV_ABORT_SCOPE",
    show_default=True,
    help="What an aborting step stops: the whole run, or only its dependents.",
)
@click.option("--var", "var_pairs", multiple=True, metavar="KEY=VALUE", help="Extra playbook variable.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output the summary as JSON.")
@click.pass_context
def run(
    ctx: click.Context,
    playbook: Path | None,
    site_name: str | None,
    skip_backup_confirmation: bool,
    non_interactive: bool,
    dry_run: bool,
    abort_scope: str,
    var_pairs: tuple[str, ...],
    as_json: bool,
) -> None:
    """Provision this host from a playbook."""
    from hostprov.core.config.settings import RunConfig
    from hostprov.core.use_cases.provision import provision
    from hostprov.ui.cli.report import print_result, print_summary

    config = RunConfig(
        site_name=site_name,
        skip_backup_confirmation=skip_backup_confirmation,
        non_interactive=non_interactive,
        dry_run=dry_run,
        state_dir=ctx.obj["state_dir"],
        abort_scope=abort_scope,
        vars=_parse_vars(var_pairs),
    )
    quiet = ctx.obj.get("quiet", False) or as_json

    result = provision(playbook, config, on_result=None if quiet else print_result)

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        sys.exit(result.exit_code)

    if result.error:
        click.secho(f"❌ {result.error}", fg="red", err=True)
    if result.summary is not None:
        title = result.playbook.name if result.playbook else ""
        if dry_run:
            title += " (dry run)"
        print_summary(result.summary, title)
    sys.exit(result.exit_code)


# ── plan ────────────────────────────────────────────────────────


@cli.command()
@_PLAYBOOK_ARG
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
def plan(playbook: Path | None, as_json: bool) -> None:
    """Show the steps of a playbook in execution order."""
    from hostprov.core.errors import ConfigError, PlanError
    from hostprov.core.use_cases.provision import load_and_plan
    from hostprov.ui.cli.report import print_plan

    try:
        loaded, run_plan = load_and_plan(playbook)
    except (ConfigError, PlanError) as e:
        click.secho(f"❌ {e}", fg="red", err=True)
        sys.exit(EXIT_INVALID)

    if as_json:
        click.echo(json.dumps({"playbook": loaded.name, **run_plan.to_dict()}, indent=2))
        return

    click.secho(f"\n📋 {loaded.name}: {len(run_plan)} step(s)", fg="cyan", bold=True)
    print_plan(run_plan)
    click.echo()


# ── check ───────────────────────────────────────────────────────


@cli.command()
@_PLAYBOOK_ARG
@click.option("--site-name", envvar="HOSTPROV_SITE_NAME", default=None, help="Site name for probes.")
@click.option("--no-probe", is_flag=True, help="Validate only; don't probe the host.")
@click.option("--var", "var_pairs", multiple=True, metavar="KEY=VALUE", help="Extra playbook variable.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
def check(
    playbook: Path | None,
    site_name: str | None,
    no_probe: bool,
    var_pairs: tuple[str, ...],
    as_json: bool,
) -> None:
    """Validate a playbook and show which steps are already satisfied."""
    from hostprov.core.config.settings import RunConfig
    from hostprov.core.use_cases.check import check_playbook

    config = RunConfig(site_name=site_name, vars=_parse_vars(var_pairs))
    result = check_playbook(playbook, config, probe=not no_probe)

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        sys.exit(0 if result.valid else EXIT_INVALID)

    if not result.valid:
        click.secho("❌ Playbook errors:", fg="red", bold=True)
        for err in result.errors:
            click.echo(f"   • {err}")
        sys.exit(EXIT_INVALID)

    assert result.playbook is not None
    click.secho(f"✅ {result.playbook.name} is valid", fg="green", bold=True)
    for c in result.steps:
        if c.would_skip:
            click.secho(f"   ⏭ {c.step_id}", fg="cyan", nl=False)
            click.echo(f"  ({c.outcome})")
        else:
            click.secho(f"   ▶ {c.step_id}", fg="yellow", nl=False)
            click.echo(f"  ({c.outcome}, would run)")

    if result.warnings:
        click.echo()
        click.secho("⚠️  Warnings:", fg="yellow")
        for warn in result.warnings:
            click.echo(f"   • {warn}")
    click.echo()


# ── status / log ────────────────────────────────────────────────


@cli.command()
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def status(ctx: click.Context, as_json: bool) -> None:
    """Show the last run on this host."""
    from hostprov.core.use_cases.status import get_status

    result = get_status(ctx.obj["state_dir"])

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        return

    if result.state is None or not result.state.last_run.run_id:
        click.echo("No runs recorded yet.")
        return

    last = result.state.last_run
    color = {"ok": "green", "warned": "yellow"}.get(last.status, "red")
    click.secho(f"\n📋 {last.playbook}", fg="cyan", bold=True)
    click.echo(f"   Last run: {last.run_id}{' (dry run)' if last.dry_run else ''} → ", nl=False)
    click.secho(last.status, fg=color)
    click.echo(f"   Ended:    {last.ended_at}")
    click.echo(f"   Exit:     {last.exit_code}")
    counts = ", ".join(f"{k}={v}" for k, v in last.counts.items() if v)
    if counts:
        click.echo(f"   Steps:    {counts}")
    click.echo(f"   Log:      {last.log_path}")
    click.echo(f"   Runs on record: {len(result.runs)}")
    click.echo()


@cli.command()
@click.argument("run_id", required=False)
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def log(ctx: click.Context, run_id: str | None, as_json: bool) -> None:
    """Show a run log (default: the most recent run)."""
    from hostprov.core.use_cases.status import read_log
    from hostprov.ui.cli.report import print_result, print_summary

    result = read_log(ctx.obj["state_dir"], run_id)

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        sys.exit(1 if result.error else 0)

    if result.error:
        click.secho(f"❌ {result.error}", fg="red", err=True)
        sys.exit(1)

    click.secho(f"\n📜 {result.run_id}", fg="cyan", bold=True)
    for record in result.results:
        print_result(record)
    assert result.summary is not None
    print_summary(result.summary)


if __name__ == "__main__":
    cli()
