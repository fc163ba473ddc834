"""Command-line interface for Stagehand.

Commands:
- build: Build the site into the output directory.
- serve: Run the development server with rebuild on change.
"""

from __future__ import annotations

from pathlib import Path

import click

from . import __version__
from .cache import clean_build_dirs
from .config import ConfigError
from .lifecycle import StageError


def _fail(title: str, detail: str) -> None:
    click.echo(click.style(title, fg="red", bold=True), err=True)
    click.echo(click.style(f"  {detail}", fg="white"), err=True)
    raise SystemExit(1)


def _report_stage_error(exc: StageError) -> None:
    click.echo(click.style("Build failed:", fg="red", bold=True), err=True)
    click.echo(click.style(f"  Stage: {exc.stage}", fg="yellow"), err=True)
    click.echo(click.style(f"  Plugin: {exc.plugin}", fg="yellow"), err=True)
    click.echo(click.style(f"  Error: {exc.cause}", fg="white"), err=True)
    raise SystemExit(1)


@click.group()
@click.version_option(version=__version__, prog_name="stagehand")
@click.option("-v", "--verbose", is_flag=True, help="Print stage timings, file events and requests")
@click.option(
    "-c",
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Config file (default: stagehand.yaml)",
)
@click.pass_context
def cli(ctx: click.Context, verbose: bool, config_path: Path | None):
    """Stagehand static site generator."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["config_path"] = config_path


@cli.command()
@click.option("--clean", is_flag=True, help="Remove the output and cache directories first")
@click.option("--clean-all", is_flag=True, help="Also remove external cache directories")
@click.option("--dry-run", is_flag=True, help="Report what would be built without writing")
@click.option("--fast", is_flag=True, help="Skip optional expensive plugins")
@click.pass_context
def build(ctx: click.Context, clean: bool, clean_all: bool, dry_run: bool, fast: bool):
    """Build the site into the output directory."""
    if clean and clean_all:
        raise click.UsageError("--clean and --clean-all are mutually exclusive")
    from .build import create_manager, dry_run as run_dry, license_warning, run_build

    verbose = ctx.obj["verbose"]
    project_root = Path.cwd()
    try:
        manager = create_manager(project_root, ctx.obj["config_path"], fast=fast)
    except ConfigError as exc:
        _fail("Configuration error:", str(exc))

    config = manager.config
    if dry_run:
        try:
            report = run_dry(manager)
        except StageError as exc:
            _report_stage_error(exc)
        for warning in report.warnings:
            click.echo(click.style(str(warning), fg="yellow"))
        click.echo("Dry run: nothing written")
        click.echo(f"  files: {report.files}")
        click.echo(f"  posts: {report.posts}")
        click.echo(f"  feeds: {len(report.feeds)}" + (f" ({', '.join(report.feeds)})" if report.feeds else ""))
        return

    if clean or clean_all:
        for path in clean_build_dirs(config, include_external=clean_all):
            if verbose:
                click.echo(f"Removed {path}")
    try:
        result = run_build(manager, verbose=verbose)
    except StageError as exc:
        _report_stage_error(exc)
    for warning in result.warnings:
        click.echo(click.style(str(warning), fg="yellow"))
    notice = license_warning(config)
    if notice:
        click.echo(click.style(notice, fg="yellow"))
    click.echo(
        f"Built {result.posts} posts and {result.feeds} feeds into {result.output_dir} "
        f"in {result.duration:.2f}s"
    )


@cli.command()
@click.option("--port", type=int, required=False, help="Port to serve on (overrides stagehand.yaml)")
@click.option("--host", type=str, required=False, help="Address to bind (overrides stagehand.yaml)")
@click.option(
    "--watch",
    type=click.BOOL,
    default=True,
    is_flag=False,
    flag_value=True,
    show_default=True,
    help="Rebuild when files change; accepts --watch=false",
)
@click.option("--no-watch", is_flag=True, help="Disable rebuild on change (wins over --watch)")
@click.option("--fast", is_flag=True, help="Skip optional expensive plugins")
@click.pass_context
def serve(ctx: click.Context, port: int | None, host: str | None, watch: bool, no_watch: bool, fast: bool):
    """Run the development server."""
    from .server import DevServer

    try:
        server = DevServer(
            Path.cwd(),
            host=host,
            port=port,
            watch=watch and not no_watch,
            fast=fast,
            config_path=ctx.obj["config_path"],
            verbose=ctx.obj["verbose"],
        )
    except ConfigError as exc:
        _fail("Configuration error:", str(exc))
    try:
        server.serve_forever()
    except OSError as exc:
        _fail("Server error:", f"could not bind {server.url}: {exc}")


def main():
    """Entry point for the CLI application."""
    cli(obj={})
