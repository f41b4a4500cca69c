from __future__ import annotations

import click
from flask import Flask
from flask.cli import with_appcontext

from .versions.service import sweep_orphan_blobs


@click.command("purge-orphan-blobs")
@click.option("--dry-run", is_flag=True, help="Report orphaned blobs without deleting them.")
@with_appcontext
def purge_orphan_blobs_command(dry_run: bool) -> None:
    """Delete stored blobs that no file version references."""
    orphans = sweep_orphan_blobs(dry_run=dry_run)
    if dry_run:
        for path in orphans:
            click.echo(path)
        click.echo(f"Would remove {len(orphans)} orphaned blob(s).")
        return
    click.echo(f"Removed {len(orphans)} orphaned blob(s).")


def register_commands(app: Flask) -> None:
    app.cli.add_command(purge_orphan_blobs_command)
