"""kmm-reconcile CLI - Main entrypoint.

Usage:
    kmm-reconcile diff 1 2
    kmm-reconcile sync 1 2 roles offline_access
    kmm-reconcile topology
    kmm-reconcile tags apply 1 2 3 --tag 4
"""

from __future__ import annotations

import typer

from kmm.reconcile.cli.commands import diff, sync, tags_app, topology

app = typer.Typer(
    name="kmm-reconcile",
    help="Compare and sync Keycloak realms across clusters",
    add_completion=True,
)

app.command("diff")(diff)
app.command("sync")(sync)
app.command("topology")(topology)
app.add_typer(tags_app, name="tags")


def create_app() -> None:
    """CLI entrypoint."""
    app()


if __name__ == "__main__":
    create_app()
