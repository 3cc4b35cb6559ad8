"""Reconciliation CLI commands.

Commands:
    kmm-reconcile diff <source-id> <destination-id>
    kmm-reconcile sync <source-id> <destination-id> <category> <key>...
    kmm-reconcile topology
    kmm-reconcile tags plan|apply <cluster-id>... --tag <tag-id>
"""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Annotated, Optional

import typer

from kmm.reconcile.audit import AuditLogger
from kmm.reconcile.config import settings
from kmm.reconcile.directory import FileClusterDirectory
from kmm.reconcile.errors import ReconcileError
from kmm.reconcile.keycloak import KeycloakAuthError, KeycloakError, KeycloakGateway
from kmm.reconcile.logs import configure_logging
from kmm.reconcile.models import DiffStatus, EntityCategory, TopologyNode
from kmm.reconcile.service import ComparisonResult, ReconciliationService

logger = logging.getLogger(__name__)

tags_app = typer.Typer(
    name="tags",
    help="Bulk environment tag operations",
    add_completion=False,
)

InventoryOption = Annotated[
    Path,
    typer.Option(
        "--inventory",
        "-i",
        help="Cluster inventory YAML file",
        envvar="KMM_INVENTORY_PATH",
    ),
]
VerboseOption = Annotated[
    bool,
    typer.Option("--verbose", "-v", help="Enable verbose output"),
]

_STATUS_MARKS = {
    DiffStatus.MATCH: "=",
    DiffStatus.MISSING_IN_DESTINATION: "+",
    DiffStatus.MISSING_IN_SOURCE: "-",
    DiffStatus.DIFFERENT_CONFIG: "~",
}


def _configure_logging(verbose: bool) -> None:
    configure_logging(logging.DEBUG if verbose else None)


def build_service(inventory: Path) -> ReconciliationService:
    """Wire the service to the inventory file and the Keycloak admin API."""
    directory = FileClusterDirectory(inventory)
    gateway = KeycloakGateway(directory, timeout=settings.request_timeout)
    return ReconciliationService(
        source=gateway,
        syncer=gateway,
        tags=directory,
        directory=directory,
        audit=AuditLogger(enabled=settings.audit_enabled, log_values=settings.audit_log_values),
    )


def _fail(message: str) -> None:
    typer.secho(message, fg=typer.colors.RED, err=True)
    raise typer.Exit(1)


def _run(coro):
    try:
        return asyncio.run(coro)
    except KeycloakAuthError as e:
        _fail(f"Authentication failed: {e}")
    except KeycloakError as e:
        _fail(f"Keycloak error: {e}")
    except (ReconcileError, OSError, ValueError) as e:
        _fail(f"Error: {e}")


def _print_comparison(result: ComparisonResult, show_matches: bool) -> None:
    for category, diff in result.diffs.items():
        typer.secho(f"\n[{category.value}]", bold=True)
        for record in sorted(diff.records, key=lambda r: r.key):
            if record.status is DiffStatus.MATCH and not show_matches:
                continue
            typer.echo(f"  {_STATUS_MARKS[record.status]} {record.key}")
            for name in record.differences or []:
                delta = (record.deltas or {}).get(name)
                if delta is not None:
                    typer.echo(
                        f"      {name}: +{delta.only_in_source} -{delta.only_in_destination}"
                    )
                else:
                    typer.echo(
                        f"      {name}: {record.source_value[name]!r}"
                        f" != {record.destination_value[name]!r}"
                    )
    typer.echo("\n" + result.summary())


def diff(
    source_id: Annotated[int, typer.Argument(help="Source cluster id")],
    destination_id: Annotated[int, typer.Argument(help="Destination cluster id")],
    inventory: InventoryOption = settings.inventory_path,
    category: Annotated[
        Optional[list[EntityCategory]],
        typer.Option("--category", "-c", help="Category to compare (repeatable)"),
    ] = None,
    one_way: Annotated[
        bool,
        typer.Option("--one-way", help="Hide entities that only exist in the destination"),
    ] = not settings.default_two_way,
    show_matches: Annotated[
        bool,
        typer.Option("--all", "-a", help="Also list matching entities"),
    ] = False,
    as_json: Annotated[bool, typer.Option("--json", help="Print JSON")] = False,
    verbose: VerboseOption = False,
) -> None:
    """Compare the realms of two clusters.

    Example:
        kmm-reconcile diff 1 2 -c clients -c roles
    """
    _configure_logging(verbose)
    service = build_service(inventory)
    result = _run(
        service.compare(
            source_id,
            destination_id,
            two_way=not one_way,
            categories=category or list(EntityCategory),
        )
    )

    if as_json:
        from kmm.reconcile.routes.diff import to_diff_response

        typer.echo(to_diff_response(result).model_dump_json(indent=2, by_alias=True))
    else:
        _print_comparison(result, show_matches)

    if result.is_degraded:
        typer.secho("Warning: some categories could not be fetched", fg=typer.colors.YELLOW)


def sync(
    source_id: Annotated[int, typer.Argument(help="Source cluster id")],
    destination_id: Annotated[int, typer.Argument(help="Destination cluster id")],
    category: Annotated[EntityCategory, typer.Argument(help="Entity category")],
    keys: Annotated[list[str], typer.Argument(help="Natural keys to sync")],
    inventory: InventoryOption = settings.inventory_path,
    yes: Annotated[
        bool,
        typer.Option("--yes", "-y", help="Do not ask for confirmation"),
    ] = False,
    verbose: VerboseOption = False,
) -> None:
    """Push entities from the source realm to the destination realm.

    Sync is additive: elements only present in the destination are kept.
    Each key is synced independently; failures do not undo earlier keys.

    Example:
        kmm-reconcile sync 1 2 clients web-app admin-console
    """
    _configure_logging(verbose)

    typer.echo(
        f"Syncing {len(keys)} {category.value} from cluster {source_id} to {destination_id}"
    )
    if not yes and not typer.confirm("Continue?"):
        raise typer.Abort()

    service = build_service(inventory)
    outcome = _run(service.sync(source_id, destination_id, category, keys))

    for key in outcome.synced:
        typer.secho(f"  ✓ {key}", fg=typer.colors.GREEN)
    for key, error in outcome.failures.items():
        typer.secho(f"  ✗ {key}: {error}", fg=typer.colors.RED, err=True)

    remaining = outcome.comparison.diffs[category]
    pending = [k for k in keys if remaining.status_of(k) not in (None, DiffStatus.MATCH)]
    if pending:
        typer.echo(f"Still differing after sync: {', '.join(pending)}")

    if not outcome.success:
        raise typer.Exit(1)


def _print_node(node: TopologyNode, depth: int = 0) -> None:
    pad = "  " * depth
    if node.clusters:
        typer.echo(f"{pad}{node.key}:")
        for cluster in node.clusters:
            typer.echo(f"{pad}  - [{cluster.id}] {cluster.name} ({cluster.realm})")
        return
    typer.secho(f"{pad}{node.kind.value} {node.key}", bold=depth == 0)
    for child in node.children:
        _print_node(child, depth + 1)


def topology(
    inventory: InventoryOption = settings.inventory_path,
    as_json: Annotated[bool, typer.Option("--json", help="Print JSON")] = False,
    verbose: VerboseOption = False,
) -> None:
    """Show clusters grouped by instance and group label."""
    _configure_logging(verbose)
    service = build_service(inventory)
    nodes = _run(service.topology()).to_nodes()

    if as_json:
        typer.echo(json.dumps([n.model_dump(mode="json") for n in nodes], indent=2))
        return
    for node in nodes:
        _print_node(node)


ClusterIdsArgument = Annotated[list[int], typer.Argument(help="Selected cluster ids")]
TagOption = Annotated[
    Optional[list[int]],
    typer.Option("--tag", "-t", help="Tag every selected cluster should carry (repeatable)"),
]
ManagedOption = Annotated[
    Optional[list[int]],
    typer.Option(
        "--managed",
        "-m",
        help="Tag under control (repeatable); defaults to every tag",
    ),
]


@tags_app.command("plan")
def plan_tags(
    cluster_ids: ClusterIdsArgument,
    tag: TagOption = None,
    managed: ManagedOption = None,
    inventory: InventoryOption = settings.inventory_path,
    verbose: VerboseOption = False,
) -> None:
    """Show the batched tag operations for a selection of clusters."""
    _configure_logging(verbose)
    service = build_service(inventory)
    plan = _run(service.plan_tags(cluster_ids, tag or [], managed))
    typer.echo(plan.summary())


@tags_app.command("apply")
def apply_tags(
    cluster_ids: ClusterIdsArgument,
    tag: TagOption = None,
    managed: ManagedOption = None,
    inventory: InventoryOption = settings.inventory_path,
    yes: Annotated[
        bool,
        typer.Option("--yes", "-y", help="Do not ask for confirmation"),
    ] = False,
    verbose: VerboseOption = False,
) -> None:
    """Plan and apply tag operations. Failed batches are reported, not retried."""
    _configure_logging(verbose)
    service = build_service(inventory)
    plan = _run(service.plan_tags(cluster_ids, tag or [], managed))
    typer.echo(plan.summary())

    if plan.is_empty:
        return
    if not yes and not typer.confirm("Apply?"):
        raise typer.Abort()

    result = _run(service.apply_tag_plan(plan))
    for failure in result.failures:
        typer.secho(
            f"  ✗ {failure.action} tags {sorted(failure.operation.tag_ids)}: {failure.error}",
            fg=typer.colors.RED,
            err=True,
        )
    if not result.success:
        raise typer.Exit(1)
    typer.secho(f"✓ Applied {len(result.applied)} operations", fg=typer.colors.GREEN)
