"""Local SQLite store for lists and items.

Application writes update the local tables immediately and enqueue the
matching mutation in the same transaction. Pulled remote records are written
through ``upsert_from_remote``.
"""

import logging
import sqlite3
from typing import Any, Callable, Optional

from .database import Database
from .exceptions import LocalStorageError
from .models import (
    CATEGORIES,
    ITEM_COLUMNS,
    LIST_COLUMNS,
    Entity,
    EntityKind,
    ListItem,
    OperationKind,
    ShoppingList,
)
from .sync.queue import MutationQueue
from .sync.resolver import MergeDecision
from .utils import format_timestamp, new_entity_id, utcnow

logger = logging.getLogger(__name__)

LIST_UPDATABLE_FIELDS = (
    "name",
    "color",
    "store_id",
    "store_name",
    "is_archived",
    "budget",
)

ITEM_UPDATABLE_FIELDS = (
    "name",
    "category",
    "quantity",
    "unit",
    "price",
    "notes",
    "is_checked",
    "is_in_pantry",
    "checked_by",
)

_COLUMNS = {
    EntityKind.LISTS: LIST_COLUMNS,
    EntityKind.ITEMS: ITEM_COLUMNS,
}


def _to_sql_value(value: Any) -> Any:
    if isinstance(value, bool):
        return int(value)
    return value


class LocalStore:
    """Authoritative on-device store for lists and items."""

    def __init__(self, db: Database, queue: Optional[MutationQueue] = None):
        """Initialize the store.

        Args:
            db: Local database
            queue: Mutation queue receiving write intents (created on the
                same database if omitted)
        """
        self.db = db
        self.queue = queue or MutationQueue(db)

    # =========================
    # Sync collaborator contract
    # =========================

    def get_by_id(self, kind: EntityKind, entity_id: str) -> Optional[Entity]:
        """Load one entity, or None if it does not exist locally."""
        kind = EntityKind(kind)
        row = self.db.fetchone(
            f"SELECT * FROM {kind.collection} WHERE id = ?", (entity_id,)
        )
        if row is None:
            return None
        return kind.entity_class.from_record(row)

    def get_all_by_parent(self, list_id: str) -> list[ListItem]:
        """Return the items of a list, oldest first."""
        rows = self.db.fetchall(
            "SELECT * FROM items WHERE list_id = ? ORDER BY created_at ASC",
            (list_id,),
        )
        return [ListItem.from_record(row) for row in rows]

    def upsert_from_remote(self, entity: Entity) -> None:
        """Insert or replace a pulled entity, keeping its dependants.

        The entity is stored as given (the engine marks pulled records as
        synced). An existing row is updated in place so that items of a
        list are not cascaded away.

        Raises:
            LocalStorageError: If the write fails (e.g. the parent list of an
                item is unknown locally)
        """
        kind = EntityKind(entity.kind)
        columns = _COLUMNS[kind]
        record = entity.to_record()
        values = tuple(_to_sql_value(record[column]) for column in columns)
        assignments = ", ".join(
            f"{column} = excluded.{column}" for column in columns if column != "id"
        )

        self.db.execute(
            f"""
            INSERT INTO {kind.collection} ({", ".join(columns)})
            VALUES ({", ".join("?" for _ in columns)})
            ON CONFLICT(id) DO UPDATE SET {assignments}
            """,
            values,
        )

    def merge_from_remote(
        self,
        remote: Entity,
        resolve: Callable[[Optional[Entity], Entity], MergeDecision],
    ) -> MergeDecision:
        """Resolve a pulled entity against the local copy and apply it.

        The local read, the decision and the write run in one transaction,
        so a local edit cannot slip in between them.

        Args:
            remote: Entity pulled from the backend
            resolve: Decides between the local copy (or None) and ``remote``

        Returns:
            The decision taken
        """
        with self.db.transaction():
            local = self.get_by_id(remote.kind, remote.id)
            decision = resolve(local, remote)
            if decision.apply_remote:
                remote.is_synced = True
                self.upsert_from_remote(remote)
        return decision

    # =========================
    # Lists
    # =========================

    def get_all_lists(self, include_archived: bool = False) -> list[ShoppingList]:
        """Return lists, most recently updated first."""
        query = "SELECT * FROM lists"
        if not include_archived:
            query += " WHERE is_archived = 0"
        query += " ORDER BY updated_at DESC"
        return [ShoppingList.from_record(row) for row in self.db.fetchall(query)]

    def create_list(
        self,
        name: str,
        color: str = "#4CAF50",
        budget: Optional[float] = None,
        owner_id: str = "",
        store_id: Optional[str] = None,
        store_name: Optional[str] = None,
    ) -> ShoppingList:
        """Create a list locally and queue its creation."""
        now = utcnow()
        shopping_list = ShoppingList(
            id=new_entity_id(),
            name=name,
            owner_id=owner_id,
            store_id=store_id,
            store_name=store_name,
            color=color,
            budget=budget,
            created_at=now,
            updated_at=now,
        )
        self._insert_local(shopping_list)
        return shopping_list

    def update_list(self, list_id: str, **updates: Any) -> ShoppingList:
        """Change fields of a list and queue the update.

        Args:
            list_id: List to update
            **updates: Any of name, color, store_id, store_name,
                is_archived, budget

        Returns:
            The updated list
        """
        return self._update_local(EntityKind.LISTS, list_id, updates)

    def delete_list(self, list_id: str) -> None:
        """Delete a list (and, by cascade, its items) and queue the delete."""
        self._delete_local(EntityKind.LISTS, list_id)

    # =========================
    # Items
    # =========================

    def create_item(
        self,
        list_id: str,
        name: str,
        category: str = "other",
        quantity: Optional[float] = None,
        unit: Optional[str] = None,
        price: Optional[float] = None,
        notes: Optional[str] = None,
        added_by: Optional[str] = None,
    ) -> ListItem:
        """Add an item to a list and queue its creation.

        Raises:
            ValueError: If the category is unknown
            LocalStorageError: If the list does not exist
        """
        if category not in CATEGORIES:
            raise ValueError(f"Unknown category: {category}")

        now = utcnow()
        item = ListItem(
            id=new_entity_id(),
            list_id=list_id,
            name=name,
            category=category,
            quantity=quantity,
            unit=unit,
            price=price,
            notes=notes,
            added_by=added_by,
            created_at=now,
            updated_at=now,
        )
        self._insert_local(item)
        return item

    def update_item(self, item_id: str, **updates: Any) -> ListItem:
        """Change fields of an item and queue the update.

        Args:
            item_id: Item to update
            **updates: Any of name, category, quantity, unit, price, notes,
                is_checked, is_in_pantry, checked_by

        Returns:
            The updated item
        """
        if "category" in updates and updates["category"] not in CATEGORIES:
            raise ValueError(f"Unknown category: {updates['category']}")
        return self._update_local(EntityKind.ITEMS, item_id, updates)

    def toggle_item_checked(self, item_id: str) -> bool:
        """Flip the checked state of an item.

        Returns:
            The new checked state
        """
        with self.db.transaction():
            item = self.get_by_id(EntityKind.ITEMS, item_id)
            if item is None:
                raise LocalStorageError(f"Item not found: {item_id}")
            updated = self._update_local(
                EntityKind.ITEMS, item_id, {"is_checked": not item.is_checked}
            )
        return updated.is_checked

    def delete_item(self, item_id: str) -> None:
        """Delete an item and queue the delete."""
        self._delete_local(EntityKind.ITEMS, item_id)

    def delete_checked_items(self, list_id: str) -> int:
        """Delete all checked items of a list.

        Returns:
            Number of items deleted
        """
        with self.db.transaction():
            rows = self.db.fetchall(
                "SELECT id FROM items WHERE list_id = ? AND is_checked = 1",
                (list_id,),
            )
            for row in rows:
                self._delete_local(EntityKind.ITEMS, row["id"])
        return len(rows)

    def move_checked_to_pantry(self, list_id: str) -> int:
        """Move checked items of a list to the pantry and uncheck them.

        Returns:
            Number of items moved
        """
        with self.db.transaction():
            rows = self.db.fetchall(
                "SELECT id FROM items WHERE list_id = ? AND is_checked = 1",
                (list_id,),
            )
            for row in rows:
                self._update_local(
                    EntityKind.ITEMS,
                    row["id"],
                    {"is_in_pantry": True, "is_checked": False},
                )
        return len(rows)

    # =========================
    # Internal helpers
    # =========================

    def _insert_local(self, entity: Entity) -> None:
        kind = EntityKind(entity.kind)
        columns = _COLUMNS[kind]
        record = entity.to_record()

        with self.db.transaction() as conn:
            try:
                conn.execute(
                    f"""
                    INSERT INTO {kind.collection} ({", ".join(columns)})
                    VALUES ({", ".join("?" for _ in columns)})
                    """,
                    tuple(_to_sql_value(record[column]) for column in columns),
                )
            except sqlite3.IntegrityError as e:
                raise LocalStorageError(
                    f"Cannot create {kind.value} record {entity.id}: {e}"
                ) from e
            self.queue.enqueue(OperationKind.CREATE, kind, entity.id, record)

        logger.debug(f"Created {kind.value} record {entity.id}")

    def _update_local(
        self, kind: EntityKind, entity_id: str, updates: dict[str, Any]
    ) -> Entity:
        allowed = (
            LIST_UPDATABLE_FIELDS if kind == EntityKind.LISTS else ITEM_UPDATABLE_FIELDS
        )
        unknown = set(updates) - set(allowed)
        if unknown:
            raise ValueError(
                f"Cannot update {kind.value} field(s): {', '.join(sorted(unknown))}"
            )

        now = utcnow()
        changes = {**updates, "updated_at": format_timestamp(now)}
        assignments = ", ".join(f"{column} = ?" for column in changes)

        with self.db.transaction() as conn:
            cursor = conn.execute(
                f"""
                UPDATE {kind.collection}
                SET {assignments}, is_synced = 0
                WHERE id = ?
                """,
                (*(_to_sql_value(v) for v in changes.values()), entity_id),
            )
            if cursor.rowcount == 0:
                raise LocalStorageError(f"{kind.value} record not found: {entity_id}")
            self.queue.enqueue(OperationKind.UPDATE, kind, entity_id, changes)
            entity = self.get_by_id(kind, entity_id)

        logger.debug(f"Updated {kind.value} record {entity_id}: {sorted(updates)}")
        return entity

    def _delete_local(self, kind: EntityKind, entity_id: str) -> None:
        with self.db.transaction() as conn:
            cursor = conn.execute(
                f"DELETE FROM {kind.collection} WHERE id = ?", (entity_id,)
            )
            if cursor.rowcount == 0:
                raise LocalStorageError(f"{kind.value} record not found: {entity_id}")
            self.queue.enqueue(OperationKind.DELETE, kind, entity_id, {})

        logger.debug(f"Deleted {kind.value} record {entity_id}")
