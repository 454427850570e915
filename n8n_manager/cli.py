"""
Command-line interface for the n8n manager package.

This module provides the ``n8n-manager`` command for backing up and
restoring n8n workflows.
"""

import sys
import json
import logging
import functools
import click
from typing import Dict, Any, Optional, List, Tuple

from n8n_manager.client import N8NClient
from n8n_manager.commands import N8NCommandRunner
from n8n_manager.config import N8NConfig
from n8n_manager.exceptions import N8NError
from n8n_manager.pipelines import BackupPipeline, PipelineResult, RestorePipeline
from n8n_manager.reconcile.snapshot import SnapshotService

LOG_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"


def configure_logging(verbosity: int) -> None:
    """
    Route the package loggers to stderr.

    Args:
        verbosity: Number of ``-v`` flags; one shows progress, two shows
            the API and CLI traffic.
    """
    level = {0: logging.WARNING, 1: logging.INFO}.get(verbosity, logging.DEBUG)
    logging.basicConfig(level=level, format=LOG_FORMAT, stream=sys.stderr)
    if verbosity < 3:
        # urllib3 connection chatter only at -vvv
        logging.getLogger("urllib3").setLevel(max(level, logging.INFO))


def render(data: Any, output: str, rows: Optional[List[Dict[str, Any]]] = None, fields: Optional[List[str]] = None) -> None:
    """
    Print ``data`` in the requested output format.

    Args:
        data: What json and pretty output print.
        output: One of ``json``, ``table`` or ``pretty``.
        rows: Table rows; defaults to ``data`` when it is a list of dicts.
        fields: Table columns; defaults to the keys of the first row.
    """
    if output != "table":
        click.echo(json.dumps(data, indent=2 if output == "pretty" else None, default=str))
        return

    rows = data if rows is None else rows
    if not rows:
        click.echo("(empty)")
        return
    fields = fields or list(rows[0].keys())
    cells = [[str(row.get(field, "")) for field in fields] for row in rows]
    widths = [max(len(field), *(len(line[i]) for line in cells)) for i, field in enumerate(fields)]

    click.echo("  ".join(field.upper().ljust(width) for field, width in zip(fields, widths)))
    for line in cells:
        click.echo("  ".join(cell.ljust(width) for cell, width in zip(line, widths)).rstrip())


def output_result(result: PipelineResult, output: str) -> None:
    """Print a pipeline result; the table form lists its counters."""
    counters = [
        {"counter": key, "value": value}
        for key, value in result.details.items()
        if isinstance(value, (int, str)) and not isinstance(value, bool)
    ]
    render(result.to_dict(), output, rows=counters, fields=["counter", "value"])
    if output == "table":
        for warning in result.warnings:
            click.echo(f"Warning: {warning}", err=True)


def exits_on_error(func):
    """Turn package errors into a message on stderr and exit status 1."""
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        configure_logging(kwargs.get("verbose", 0))
        try:
            return func(*args, **kwargs)
        except N8NError as e:
            click.echo(f"Error: {e}", err=True)
            sys.exit(1)
    return wrapper


def build_context(config_file: Optional[str], profile: str, **overrides) -> Tuple[N8NConfig, N8NClient, N8NCommandRunner]:
    """
    Load the profile, apply command-line overrides, and build the collaborators.

    Returns:
        Tuple: The configuration, API client and command runner.
    """
    # unset flags keep the profile value
    config = N8NConfig(config_file=config_file, profile=profile).override(
        **{key: value for key, value in overrides.items() if value}
    )
    client = N8NClient(config=config)
    runner = N8NCommandRunner(container=config.container, dry_run=config.dry_run)
    return config, client, runner


def shared_options(func):
    """Attach the profile, verbosity and output options every command takes."""
    options = [
        click.option("--config-file", "-c", help="YAML file holding the connection profiles."),
        click.option("--profile", "-p", default="default", show_default=True, help="Profile to connect with."),
        click.option("--verbose", "-v", count=True, help="Log progress; repeat for API and CLI traffic."),
        click.option(
            "--output", "-o",
            type=click.Choice(["json", "table", "pretty"]),
            default="pretty",
            show_default=True,
            help="How to print the result.",
        ),
    ]
    for option in reversed(options):
        func = option(func)
    return func


@click.group()
@click.version_option(package_name="n8n-manager")
def cli():
    """
    n8n manager - back up and restore n8n workflows.

    Backups mirror the remote project and folder hierarchy on disk.
    Restores reconcile that tree with a live instance without creating
    duplicates.
    """


@cli.group()
def config():
    """Inspect the connection profiles."""


@config.command("list-profiles")
@shared_options
@exits_on_error
def config_list_profiles(config_file, profile, verbose, output):
    """List the profiles defined in the configuration file."""
    names = N8NConfig(config_file=config_file, profile=profile).get_available_profiles()
    render(names, output, rows=[{"profile": name} for name in names])


@config.command("get-profile")
@click.argument("profile_name")
@shared_options
@exits_on_error
def config_get_profile(profile_name, config_file, profile, verbose, output):
    """Show one profile with its secrets masked."""
    settings = dict(N8NConfig(config_file=config_file, profile=profile_name).profile_config)
    for secret in ("password", "api_key"):
        if secret in settings:
            settings[secret] = "********"
    render(settings, output, rows=[settings])


@cli.command("backup")
@click.option("--target", "target_dir", help="Backup root; defaults to local_backup_path.")
@click.option("--dry-run", is_flag=True, help="Log commands instead of running them.")
@shared_options
@exits_on_error
def backup(target_dir, dry_run, config_file, profile, verbose, output):
    """Back up workflows and credentials."""
    config, client, runner = build_context(config_file, profile, dry_run=dry_run)
    result = BackupPipeline(client, config, runner).execute(operation="backup", backup_dir=target_dir)
    output_result(result, output)


@cli.command("restore")
@click.option("--source", "source_dir", type=click.Path(file_okay=False), help="Backup root; defaults to local_backup_path.")
@click.option("--preserve-ids", is_flag=True, help="Force staged ids to the matched existing workflow ids.")
@click.option("--no-overwrite", is_flag=True, help="Always import workflows as new copies.")
@click.option("--dry-run", is_flag=True, help="Plan the restore without changing n8n.")
@click.option("--keep-manifest", is_flag=True, help="Copy the restore manifest into the backup root.")
@shared_options
@exits_on_error
def restore(source_dir, preserve_ids, no_overwrite, dry_run, keep_manifest, config_file, profile, verbose, output):
    """Restore workflows and credentials from a backup."""
    config, client, runner = build_context(
        config_file,
        profile,
        preserve_ids=preserve_ids,
        no_overwrite=no_overwrite,
        dry_run=dry_run,
        keep_manifest=keep_manifest,
    )
    result = RestorePipeline(client, config, runner).execute(operation="restore", source_dir=source_dir)
    output_result(result, output)


@cli.command("snapshot")
@click.option("--save", "save_path", help="Also write the snapshot to this file.")
@shared_options
@exits_on_error
def snapshot(save_path, config_file, profile, verbose, output):
    """Show the workflows currently on the instance."""
    config, client, runner = build_context(config_file, profile)
    service = SnapshotService(client, runner)
    workflows, source = service.capture(required=True)
    if save_path:
        service.save(workflows, save_path)

    render(
        {"source": source, "workflows": [row.to_dict() for row in workflows]},
        output,
        rows=[{"id": row.id, "name": row.name, "instanceId": row.instance_marker} for row in workflows],
    )


def main():
    """Entry point for the ``n8n-manager`` console script."""
    cli()


if __name__ == "__main__":
    main()
