"""Operator command line: key rotation, update checks, update and rollback.

Entry point: domain_tracker.cli:main
"""

import asyncio
import json
import logging
import os
import sys
from pathlib import Path

import click

from domain_tracker.models.errors import DomainTrackerError
from domain_tracker.models.settings import Settings
from domain_tracker.services.backups import generation_label
from domain_tracker.services.credentials import CredentialRepository
from domain_tracker.services.key_rotation import rotate_keys
from domain_tracker.services.update_check import UpdateCheckService
from domain_tracker.services.update_engine import UpdateEngine
from domain_tracker.utils.logging import setup_logger


def _fail(message: str) -> None:
    click.echo(message, err=True)
    raise SystemExit(1)


@click.group()
@click.option(
    "--base-path",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Installation root (default: $DOMAIN_TRACKER_BASE_PATH or cwd).",
)
@click.pass_context
def main(ctx: click.Context, base_path):
    """Domain Tracker maintenance tools."""
    settings = Settings.from_env(base_path=base_path)
    setup_logger(
        "domain_tracker",
        str(settings.log_path),
        level=logging.getLevelName(settings.log_level),
        console=False,
    )
    ctx.obj = settings


@main.command("rotate-key")
@click.argument("new_key", required=False)
@click.pass_obj
def rotate_key(settings: Settings, new_key):
    """Re-encrypt stored database passwords under NEW_KEY.

    The key can also come from APP_KEY_NEW, or is prompted for on a terminal.
    Update APP_KEY only after this reports no errors.
    """
    if not settings.app_key:
        _fail("APP_KEY is not configured. Set it in your .env file.")

    new_key = new_key or os.environ.get("APP_KEY_NEW", "")
    if not new_key and sys.stdin.isatty():
        new_key = click.prompt(
            "Enter new encryption key (32+ chars recommended)",
            hide_input=True,
            default="",
            show_default=False,
        )
    if not new_key.strip():
        _fail(
            "Provide the new key via: APP_KEY_NEW=your_new_key domain-tracker rotate-key\n"
            "Or pass as argument: domain-tracker rotate-key your_new_key"
        )

    if not settings.db_path.is_file():
        _fail(f"Database not found: {settings.db_path}")

    try:
        result = rotate_keys(settings.app_key, new_key, CredentialRepository(settings.db_path))
    except DomainTrackerError as e:
        _fail(str(e))

    if result.errors:
        for error in result.errors:
            click.echo(error, err=True)
        _fail(f"Rotated {result.rotated} value(s); {len(result.errors)} could not be rotated.")

    click.echo(f"Rotated {result.rotated} encrypted value(s).")
    click.echo("")
    click.echo("Next step: Update your .env file. Replace APP_KEY with the new key you provided.")
    click.echo("Remove any temporary APP_KEY_NEW from your environment.")


@main.command("check-updates")
@click.pass_obj
def check_updates(settings: Settings):
    """Check the update archive for changed files."""
    result = asyncio.run(UpdateCheckService(settings).run(force=True))
    if result.error:
        _fail(result.error)
    if result.available:
        click.echo(f"Update available: {result.count} file(s)")
    else:
        click.echo("No updates found.")


@main.command("compare-updates")
@click.option("--json", "as_json", is_flag=True, help="Print the diff as JSON.")
@click.pass_obj
def compare_updates(settings: Settings, as_json: bool):
    """Show which files an update would create, overwrite or delete."""
    try:
        diff = asyncio.run(UpdateEngine(settings).preview())
    except DomainTrackerError as e:
        _fail(str(e))

    if as_json:
        click.echo(json.dumps(diff.model_dump(mode="json"), indent=2))
        return

    sections = (
        ("New files", diff.created),
        ("Changed files", diff.overwritten),
        ("Removed upstream", diff.deleted),
        ("Protected files differing from upstream (not applied)", diff.excluded_changed),
    )
    for title, paths in sections:
        click.echo(f"{title}:")
        for path in paths:
            click.echo(f"  - {path}")
        click.echo("")


@main.command("update")
@click.pass_obj
def update(settings: Settings):
    """Apply the update archive, backing up every replaced file."""
    try:
        result = asyncio.run(UpdateEngine(settings).update())
    except DomainTrackerError as e:
        _fail(f"Update failed: {e}")

    manifest = result.manifest
    click.echo(
        f"Update completed (backup {manifest.timestamp}): "
        f"{len(manifest.created)} created, {len(manifest.overwritten)} overwritten, "
        f"{len(manifest.deleted)} deleted."
    )
    for path in result.excluded_changed:
        click.echo(f"Warning: protected file differs from upstream: {path}", err=True)


@main.command("rollback")
@click.option("--backup", default=None, help="Backup id (YYYYMMDD_HHMMSS); latest if omitted.")
@click.pass_obj
def rollback(settings: Settings, backup):
    """Restore the files recorded in a backup generation."""
    try:
        result = asyncio.run(UpdateEngine(settings).rollback(backup))
    except DomainTrackerError as e:
        _fail(f"Rollback failed: {e}")

    if not result.restored:
        click.echo("No backups found.")
        return
    click.echo(
        f"Rolled back to {result.generation}: {len(result.removed)} removed, "
        f"{len(result.restored_files)} restored."
    )


@main.command("backups")
@click.pass_obj
def backups(settings: Settings):
    """List backup generations, newest first."""
    generations = UpdateEngine(settings).backups.list_generations()
    if not generations:
        click.echo("No backups found.")
        return
    for generation in generations:
        click.echo(f"{generation}  {generation_label(generation)}")


@main.command("serve")
@click.pass_obj
def serve(settings: Settings):
    """Run the updater HTTP API."""
    from domain_tracker.main import main as run_server

    run_server(settings)


if __name__ == "__main__":
    main()
