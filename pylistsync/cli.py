"""CLI interface for pylistsync."""

import logging
import time
from typing import Any, Optional

import click

from .api import RemoteClient
from .config import SyncSettings, config
from .database import Database
from .exceptions import (
    ListSyncConfigError,
    ListSyncError,
    LocalStorageError,
    SyncIncompleteError,
)
from .models import CATEGORIES
from .output import OutputFormatter
from .storage import LocalStore
from .sync import SyncEngine, SyncScheduler, WatermarkStateManager, WatermarkTracker

logger = logging.getLogger(__name__)


@click.group()
@click.option("--api-key", "-k", envvar="LISTSYNC_API_KEY", help="Backend API key")
@click.option("--api-url", envvar="LISTSYNC_API_URL", help="Backend REST URL")
@click.option(
    "--db",
    "db_path",
    envvar="LISTSYNC_DB_PATH",
    type=click.Path(dir_okay=False),
    help="Path of the local SQLite database",
)
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output")
@click.option("--json", is_flag=True, help="Output in JSON format")
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    help="Enable verbose/debug logging output",
)
@click.version_option(package_name="pylistsync")
@click.pass_context
def main(
    ctx: Any,
    api_key: Optional[str],
    api_url: Optional[str],
    db_path: Optional[str],
    quiet: bool,
    json: bool,
    verbose: bool,
) -> None:
    """ListSync - offline-first shopping lists synced with a REST backend."""
    ctx.ensure_object(dict)
    ctx.obj["api_key"] = api_key
    ctx.obj["api_url"] = api_url
    ctx.obj["db_path"] = db_path
    ctx.obj["out"] = OutputFormatter(json_output=json, quiet=quiet)
    ctx.obj["verbose"] = verbose

    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%H:%M:%S",
        )
        logging.getLogger("pylistsync").setLevel(logging.DEBUG)
    else:
        logging.basicConfig(level=logging.WARNING)


def _open_store(ctx: Any) -> LocalStore:
    """Open the local database once per invocation."""
    store = ctx.obj.get("store")
    if store is None:
        db = Database(ctx.obj.get("db_path") or config.get_db_path())
        ctx.call_on_close(db.close)
        store = LocalStore(db)
        ctx.obj["store"] = store
    return store


def _create_client(ctx: Any, poll_interval: float = 30.0) -> RemoteClient:
    """Build the backend client from global options or the saved config.

    Raises:
        ListSyncConfigError: If no API key is available
    """
    client = RemoteClient(
        api_key=ctx.obj.get("api_key"),
        api_url=ctx.obj.get("api_url"),
        poll_interval=poll_interval,
    )
    ctx.call_on_close(client.close)
    return client


def _create_engine(ctx: Any, settings: Optional[SyncSettings] = None) -> SyncEngine:
    """Wire a sync engine for this invocation.

    The CLI runs as short-lived processes, so watermarks are persisted per
    backend URL.
    """
    settings = settings or SyncSettings(persist_watermarks=True)
    store = _open_store(ctx)
    client = _create_client(ctx, settings.poll_interval)
    watermarks = WatermarkTracker(
        WatermarkStateManager(config.get_state_dir(), client.api_url)
        if settings.persist_watermarks
        else None
    )
    return SyncEngine(
        gateway=client,
        store=store,
        queue=store.queue,
        watermarks=watermarks,
        settings=settings,
    )


def _show_push_stats(out: OutputFormatter, stats: dict) -> None:
    out.print_summary(
        "Push",
        [
            ("Pushed", stats["pushed"]),
            ("Failed", stats["failed"]),
            ("Abandoned", stats["abandoned"]),
            ("Skipped (abandoned)", stats["skipped_abandoned"]),
        ],
    )


def _show_pull_stats(out: OutputFormatter, stats: dict) -> None:
    out.print_summary(
        "Pull",
        [
            ("Fetched", stats["fetched"]),
            ("Applied", stats["applied"]),
            ("Kept local", stats["kept_local"]),
            ("Failed kinds", ", ".join(stats["failed_kinds"]) or "-"),
        ],
    )


@main.command()
@click.option(
    "--api-key",
    "-k",
    prompt="Enter your backend API key",
    help="Backend API key",
)
@click.option("--api-url", help="Backend REST URL")
@click.pass_context
def init(ctx: Any, api_key: str, api_url: Optional[str]) -> None:
    """Initialize configuration.

    Stores the API key (and URL) in ~/.config/pylistsync/config.
    """
    out: OutputFormatter = ctx.obj["out"]
    api_url = api_url or ctx.obj.get("api_url") or config.api_url

    try:
        out.info("Checking connection...")
        client = RemoteClient(api_key=api_key, api_url=api_url)
        try:
            reachable = client.check_connection()
        finally:
            client.close()

        if reachable:
            out.success("✓ Connection successful")
        else:
            out.error("Could not reach the backend with this API key")
            if not click.confirm("Save configuration anyway?", default=False):
                out.warning("Configuration cancelled.")
                ctx.exit(1)

        config.save_api_key(api_key)
        config.save_api_url(api_url)

        out.print_summary(
            "Initialization Complete",
            [
                ("Status", "✓ Configuration saved successfully"),
                ("Config file", str(config.get_config_path())),
                ("Backend", api_url),
            ],
        )
    except (ListSyncError, OSError) as e:
        out.error(f"Initialization failed: {e}")
        ctx.exit(1)


@main.command()
@click.pass_context
def status(ctx: Any) -> None:
    """Show queue counts, pull watermarks and connectivity."""
    out: OutputFormatter = ctx.obj["out"]

    try:
        store = _open_store(ctx)
    except LocalStorageError as e:
        out.error(str(e))
        ctx.exit(1)

    info: dict[str, Any] = {
        "database": store.db.path,
        "pending": store.queue.count_pending(),
        "abandoned": store.queue.count_abandoned(),
        "configured": bool(ctx.obj.get("api_key") or config.is_configured()),
        "online": None,
        "watermarks": {},
    }

    if info["configured"]:
        try:
            engine = _create_engine(ctx)
            info["watermarks"] = engine.watermarks.as_dict()
            info["online"] = engine.gateway.check_connection()
        except ListSyncConfigError as e:
            out.warning(str(e))

    if out.json_output:
        out.output_json(info)
        return

    items = [
        ("Database", info["database"]),
        ("Pending mutations", info["pending"]),
        ("Abandoned mutations", info["abandoned"]),
    ]
    if not info["configured"]:
        items.append(("Backend", "not configured (run 'listsync init')"))
    else:
        items.append(("Backend", "online" if info["online"] else "offline"))
        for kind, value in info["watermarks"].items():
            items.append((f"Watermark ({kind})", value))
    out.print_summary("Sync Status", items)


@main.command()
@click.pass_context
def push(ctx: Any) -> None:
    """Send queued local changes to the backend."""
    out: OutputFormatter = ctx.obj["out"]
    try:
        engine = _create_engine(ctx)
    except ListSyncError as e:
        out.error(str(e))
        ctx.exit(1)

    stats = engine.process_queue()
    if out.json_output:
        out.output_json(stats)
    else:
        _show_push_stats(out, stats)
    if stats["aborted"]:
        out.error(f"Push stopped: {stats['errors'][-1]}")
    if stats["failed"] or stats["abandoned"] or stats["aborted"]:
        ctx.exit(1)


@main.command()
@click.option(
    "--full", is_flag=True, help="Reset watermarks and pull from the beginning"
)
@click.pass_context
def pull(ctx: Any, full: bool) -> None:
    """Fetch and merge remote changes."""
    out: OutputFormatter = ctx.obj["out"]
    try:
        engine = _create_engine(ctx)
    except ListSyncError as e:
        out.error(str(e))
        ctx.exit(1)

    if full:
        engine.watermarks.reset()

    stats = engine.pull_remote_changes()
    if out.json_output:
        out.output_json(stats)
    else:
        _show_pull_stats(out, stats)
    if stats["failed_kinds"]:
        ctx.exit(1)


@main.command()
@click.pass_context
def sync(ctx: Any) -> None:
    """Push local changes, then pull remote changes.

    Exits with a non-zero status when anything could not be synchronized.
    """
    out: OutputFormatter = ctx.obj["out"]
    try:
        engine = _create_engine(ctx)
    except ListSyncError as e:
        out.error(str(e))
        ctx.exit(1)

    try:
        stats = engine.sync_now()
    except SyncIncompleteError as e:
        out.error(str(e))
        for message in e.stats["push"]["errors"] + e.stats["pull"]["errors"]:
            out.warning(message)
        if out.json_output:
            out.output_json(e.stats)
        ctx.exit(1)

    if out.json_output:
        out.output_json(stats)
        return
    _show_push_stats(out, stats["push"])
    _show_pull_stats(out, stats["pull"])
    out.success("✓ Sync complete")


@main.command()
@click.option(
    "--interval",
    "-i",
    type=float,
    default=30.0,
    show_default=True,
    help="Seconds between sync runs and change polls",
)
@click.pass_context
def watch(ctx: Any, interval: float) -> None:
    """Keep syncing in the foreground until interrupted."""
    out: OutputFormatter = ctx.obj["out"]
    settings = SyncSettings(poll_interval=interval, persist_watermarks=True)
    try:
        engine = _create_engine(ctx, settings)
    except ListSyncError as e:
        out.error(str(e))
        ctx.exit(1)

    scheduler = SyncScheduler(engine, interval=interval)
    out.info(f"Watching for changes every {interval:g}s (Ctrl+C to stop)")
    scheduler.start()
    try:
        while scheduler.running:
            time.sleep(1)
    except KeyboardInterrupt:
        out.info("Stopping...")
    finally:
        scheduler.stop()


# =========================
# Mutation queue
# =========================


@main.group()
def queue() -> None:
    """Inspect the local mutation queue."""


@queue.command("list")
@click.option("--abandoned", "-a", is_flag=True, help="Only show abandoned records")
@click.pass_context
def queue_list(ctx: Any, abandoned: bool) -> None:
    """List queued mutations, oldest first."""
    out: OutputFormatter = ctx.obj["out"]
    mutation_queue = _open_store(ctx).queue
    records = (
        mutation_queue.list_abandoned() if abandoned else mutation_queue.dequeue_ready()
    )

    if out.json_output:
        out.output_json([record.to_dict() for record in records])
        return
    if not records:
        out.info("Queue is empty")
        return

    rows = [
        {
            "seq": record.sequence_id,
            "operation": record.operation.value,
            "kind": record.entity_kind.value,
            "id": record.entity_id,
            "retries": record.retry_count,
            "state": "abandoned" if mutation_queue.is_abandoned(record) else "pending",
            "error": record.last_error,
        }
        for record in records
    ]
    out.output_table(
        rows,
        ["seq", "operation", "kind", "id", "retries", "state", "error"],
        {
            "seq": "#",
            "operation": "Operation",
            "kind": "Kind",
            "id": "Entity",
            "retries": "Retries",
            "state": "State",
            "error": "Last error",
        },
    )


@queue.command("purge")
@click.option("--yes", "-y", is_flag=True, help="Do not ask for confirmation")
@click.pass_context
def queue_purge(ctx: Any, yes: bool) -> None:
    """Delete abandoned mutations from the queue."""
    out: OutputFormatter = ctx.obj["out"]
    mutation_queue = _open_store(ctx).queue

    count = mutation_queue.count_abandoned()
    if count == 0:
        out.info("No abandoned mutations")
        return
    if not yes and not click.confirm(
        f"Discard {count} abandoned mutation(s)? These changes will never "
        "reach the backend.",
        default=False,
    ):
        out.warning("Purge cancelled.")
        return

    removed = mutation_queue.purge_abandoned()
    if out.json_output:
        out.output_json({"purged": removed})
    else:
        out.success(f"✓ Purged {removed} abandoned mutation(s)")


# =========================
# Lists
# =========================


@main.group("lists")
def lists_group() -> None:
    """Manage shopping lists locally."""


@lists_group.command("create")
@click.argument("name")
@click.option("--color", default="#4CAF50", show_default=True, help="List color")
@click.option("--budget", type=float, help="Budget for this list")
@click.option("--store-name", help="Store the list is for")
@click.pass_context
def lists_create(
    ctx: Any,
    name: str,
    color: str,
    budget: Optional[float],
    store_name: Optional[str],
) -> None:
    """Create a list."""
    out: OutputFormatter = ctx.obj["out"]
    try:
        shopping_list = _open_store(ctx).create_list(
            name, color=color, budget=budget, store_name=store_name
        )
    except LocalStorageError as e:
        out.error(str(e))
        ctx.exit(1)

    if out.json_output:
        out.output_json(shopping_list.to_record())
    else:
        out.success(f"✓ Created list '{name}' ({shopping_list.id})")


@lists_group.command("show")
@click.argument("list_id", required=False)
@click.option("--archived", is_flag=True, help="Include archived lists")
@click.pass_context
def lists_show(ctx: Any, list_id: Optional[str], archived: bool) -> None:
    """Show all lists, or the items of one list."""
    out: OutputFormatter = ctx.obj["out"]
    store = _open_store(ctx)

    if list_id is None:
        lists = store.get_all_lists(include_archived=archived)
        if not lists and not out.json_output:
            out.info("No lists")
            return
        out.output_table(
            [shopping_list.to_record() for shopping_list in lists],
            ["id", "name", "store_name", "budget", "is_synced"],
            {
                "id": "ID",
                "name": "Name",
                "store_name": "Store",
                "budget": "Budget",
                "is_synced": "Synced",
            },
        )
        return

    items = store.get_all_by_parent(list_id)
    if not items and not out.json_output:
        out.info("No items")
        return
    rows = []
    for item in items:
        row = item.to_record()
        row["checked"] = "✓" if item.is_checked else ""
        rows.append(row)
    out.output_table(
        rows,
        ["id", "checked", "name", "category", "quantity", "unit", "is_synced"],
        {
            "id": "ID",
            "checked": "",
            "name": "Name",
            "category": "Category",
            "quantity": "Qty",
            "unit": "Unit",
            "is_synced": "Synced",
        },
    )


@lists_group.command("delete")
@click.argument("list_id")
@click.option("--yes", "-y", is_flag=True, help="Do not ask for confirmation")
@click.pass_context
def lists_delete(ctx: Any, list_id: str, yes: bool) -> None:
    """Delete a list together with its items."""
    out: OutputFormatter = ctx.obj["out"]
    if not yes and not click.confirm(f"Delete list {list_id}?", default=False):
        out.warning("Delete cancelled.")
        return
    try:
        _open_store(ctx).delete_list(list_id)
    except LocalStorageError as e:
        out.error(str(e))
        ctx.exit(1)
    out.success(f"✓ Deleted list {list_id}")


# =========================
# Items
# =========================


@main.group("items")
def items_group() -> None:
    """Manage list items locally."""


@items_group.command("add")
@click.argument("list_id")
@click.argument("name")
@click.option(
    "--category",
    "-c",
    type=click.Choice(CATEGORIES),
    default="other",
    show_default=True,
)
@click.option("--quantity", type=float, help="Amount to buy")
@click.option("--unit", help="Unit of the quantity")
@click.option("--price", type=float, help="Expected price")
@click.option("--notes", help="Free-form notes")
@click.pass_context
def items_add(
    ctx: Any,
    list_id: str,
    name: str,
    category: str,
    quantity: Optional[float],
    unit: Optional[str],
    price: Optional[float],
    notes: Optional[str],
) -> None:
    """Add an item to a list."""
    out: OutputFormatter = ctx.obj["out"]
    try:
        item = _open_store(ctx).create_item(
            list_id,
            name,
            category=category,
            quantity=quantity,
            unit=unit,
            price=price,
            notes=notes,
        )
    except (LocalStorageError, ValueError) as e:
        out.error(str(e))
        ctx.exit(1)

    if out.json_output:
        out.output_json(item.to_record())
    else:
        out.success(f"✓ Added '{name}' ({item.id})")


@items_group.command("check")
@click.argument("item_id")
@click.pass_context
def items_check(ctx: Any, item_id: str) -> None:
    """Toggle the checked state of an item."""
    out: OutputFormatter = ctx.obj["out"]
    try:
        checked = _open_store(ctx).toggle_item_checked(item_id)
    except LocalStorageError as e:
        out.error(str(e))
        ctx.exit(1)

    if out.json_output:
        out.output_json({"id": item_id, "is_checked": checked})
    else:
        out.success(f"✓ Item {'checked' if checked else 'unchecked'}")


@items_group.command("delete")
@click.argument("item_id")
@click.pass_context
def items_delete(ctx: Any, item_id: str) -> None:
    """Delete an item."""
    out: OutputFormatter = ctx.obj["out"]
    try:
        _open_store(ctx).delete_item(item_id)
    except LocalStorageError as e:
        out.error(str(e))
        ctx.exit(1)
    out.success(f"✓ Deleted item {item_id}")


@items_group.command("clear-checked")
@click.argument("list_id")
@click.option(
    "--pantry",
    is_flag=True,
    help="Move checked items to the pantry instead of deleting them",
)
@click.pass_context
def items_clear_checked(ctx: Any, list_id: str, pantry: bool) -> None:
    """Delete (or move to the pantry) all checked items of a list."""
    out: OutputFormatter = ctx.obj["out"]
    store = _open_store(ctx)
    try:
        if pantry:
            count = store.move_checked_to_pantry(list_id)
        else:
            count = store.delete_checked_items(list_id)
    except LocalStorageError as e:
        out.error(str(e))
        ctx.exit(1)

    if out.json_output:
        out.output_json({"count": count})
    elif pantry:
        out.success(f"✓ Moved {count} item(s) to the pantry")
    else:
        out.success(f"✓ Deleted {count} checked item(s)")


if __name__ == "__main__":
    main()
