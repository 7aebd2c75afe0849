"""Entity kinds that share the tombstoned sync model, and the table names clients use for them."""

import json
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple, Type

from readersync.sync.models import TombstonedRecord, UserBook, UserBookmark, UserHighlight, UserNote


@dataclass(frozen=True)
class EntityKind:
    """
    Describes one synced table: its model, the payload columns the client owns, and
    whether rows are keyed by an item id under the book.
    """

    name: str
    model: Type[TombstonedRecord]
    payload_fields: Tuple[str, ...]
    has_item_id: bool
    table_names: Tuple[str, ...]

    def payload_from_wire(self, row: Dict[str, Any]) -> Dict[str, str]:
        """Pick this kind's payload fields out of a client row. Missing -> "", non-strings -> compact JSON."""
        return {f: _to_text(row.get(f)) for f in self.payload_fields}


def _to_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    return json.dumps(value, separators=(",", ":"))


PROGRESS = EntityKind(
    name="progress",
    model=UserBook,
    payload_fields=("progress",),
    has_item_id=False,
    table_names=("books", "book_data", "progress"),
)
BOOKMARK = EntityKind(
    name="bookmark",
    model=UserBookmark,
    payload_fields=("locator", "label"),
    has_item_id=True,
    table_names=("bookmark", "bookmarks"),
)
HIGHLIGHT = EntityKind(
    name="highlight",
    model=UserHighlight,
    payload_fields=("selection", "label", "colour"),
    has_item_id=True,
    table_names=("highlight", "highlights"),
)
NOTE = EntityKind(
    name="note",
    model=UserNote,
    payload_fields=("locator", "content"),
    has_item_id=True,
    table_names=("note", "notes"),
)

ALL_KINDS: Tuple[EntityKind, ...] = (PROGRESS, BOOKMARK, HIGHLIGHT, NOTE)
# Deleting a book's progress record also tombstones these under the same book
ITEM_KINDS: Tuple[EntityKind, ...] = tuple(k for k in ALL_KINDS if k.has_item_id)

_BY_TABLE = {t: k for k in ALL_KINDS for t in k.table_names}


def kind_for_table(table: Optional[str]) -> Optional[EntityKind]:
    """Return the kind for a client table name, or None if unknown."""
    if not table:
        return None
    return _BY_TABLE.get(table.strip())
