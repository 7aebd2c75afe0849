"""
Generic tombstoned record storage shared by every synced kind.

One implementation of probe / list / upsert / soft delete / change feed,
parameterized by EntityKind, so the conflict and pagination rules cannot drift
apart between progress, bookmarks, highlights and notes.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import func, select, update
from sqlalchemy.dialects.sqlite import insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from readersync.db.session import session_scope
from readersync.sync.kinds import ITEM_KINDS, EntityKind

log = logging.getLogger(__name__)


class RowStatus(str, Enum):
    ABSENT = "absent"
    LIVE = "live"
    TOMBSTONED = "tombstoned"


@dataclass(frozen=True)
class RowState:
    """Three-way existence result for one key."""

    status: RowStatus
    updated_at: int = 0
    deleted_at: int = 0

    @property
    def server_ts(self) -> int:
        """Timestamp a client write is compared against (0 when there is no row)."""
        if self.status is RowStatus.TOMBSTONED:
            return self.deleted_at
        return self.updated_at


ABSENT = RowState(RowStatus.ABSENT)


@dataclass(frozen=True)
class SyncedRow:
    file_id: str
    item_id: Optional[int]
    payload: Dict[str, Optional[str]]
    updated_at: int
    deleted_at: Optional[int] = None

    @property
    def change_ts(self) -> int:
        """Position in the change feed: coalesce(deleted_at, updated_at)."""
        return self.deleted_at if self.deleted_at is not None else self.updated_at

    def to_wire(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"fileId": self.file_id}
        if self.item_id is not None:
            out["id"] = self.item_id
        for name, value in self.payload.items():
            out[name] = value if value is not None else ""
        out["updatedAt"] = self.updated_at
        if self.deleted_at is not None:
            out["deletedAt"] = self.deleted_at
        return out


@dataclass(frozen=True)
class UpsertResult:
    """applied=True carries updated_at; applied=False is a conflict carrying server_updated_at."""

    applied: bool
    updated_at: int = 0
    server_updated_at: int = 0


@dataclass(frozen=True)
class DeleteResult:
    found: bool
    deleted_at: int = 0


@dataclass(frozen=True)
class ChangePage:
    rows: List[SyncedRow] = field(default_factory=list)
    next_since: int = 0


class SyncStore:
    """Owns the user_* tables. Every method runs in its own transaction."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def probe(
        self, kind: EntityKind, owner: str, file_id: str, item_id: Optional[int] = None
    ) -> RowState:
        _require_item_id(kind, item_id)
        async with session_scope(self._session_factory) as session:
            return await self._state(session, kind, owner, file_id, item_id)

    async def list(
        self, kind: EntityKind, owner: str, file_id: str, item_id: Optional[int] = None
    ) -> List[SyncedRow]:
        """
        Rows for one book, live and tombstoned. For item kinds, item_id=None returns every
        item under the book ordered by item id.
        """
        m = kind.model
        stmt = select(m).where(*_key_clause(kind, owner, file_id, item_id))
        if kind.has_item_id:
            stmt = stmt.order_by(m.item_id.asc())
        async with session_scope(self._session_factory) as session:
            result = await session.execute(stmt)
            return [_to_row(kind, obj) for obj in result.scalars().all()]

    async def upsert(
        self,
        kind: EntityKind,
        owner: str,
        file_id: str,
        item_id: Optional[int],
        payload: Dict[str, str],
        client_ts: int,
        force: bool,
        now: int,
    ) -> UpsertResult:
        """
        Last-writer-wins write. Rejected when not forced and the stored timestamp is newer
        than client_ts (equal is not stale). A successful write stamps updated_at=now and
        always clears the tombstone, so it resurrects a deleted record.
        """
        _require_item_id(kind, item_id)
        table = kind.model.__table__
        values: Dict[str, Any] = {"username": owner, "file_id": file_id}
        if kind.has_item_id:
            values["item_id"] = item_id
        values.update({f: payload.get(f, "") for f in kind.payload_fields})
        values.update({"updated_at": now, "deleted_at": None})

        stmt = insert(table).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=list(_pk_columns(kind)),
            set_={
                **{f: stmt.excluded[f] for f in kind.payload_fields},
                "updated_at": stmt.excluded.updated_at,
                "deleted_at": None,
            },
        )
        async with session_scope(self._session_factory) as session:
            state = await self._state(session, kind, owner, file_id, item_id)
            server_ts = state.server_ts
            if not force and server_ts > 0 and client_ts < server_ts:
                log.debug(
                    "upsert conflict kind=%s user=%s file_id=%s id=%s client=%d server=%d",
                    kind.name, owner, file_id, item_id, client_ts, server_ts,
                )
                return UpsertResult(applied=False, server_updated_at=server_ts)
            await session.execute(stmt)
        return UpsertResult(applied=True, updated_at=now)

    async def soft_delete(
        self, kind: EntityKind, owner: str, file_id: str, item_id: Optional[int], now: int
    ) -> DeleteResult:
        """
        Tombstone one record. Idempotent: an existing tombstone's deleted_at is returned
        unchanged. Deleting a book's progress record also tombstones every live item of
        the item kinds under the same (owner, file_id) with the same timestamp.
        """
        _require_item_id(kind, item_id)
        m = kind.model
        async with session_scope(self._session_factory) as session:
            state = await self._state(session, kind, owner, file_id, item_id)
            if state.status is RowStatus.ABSENT:
                return DeleteResult(found=False)
            if state.status is RowStatus.TOMBSTONED:
                return DeleteResult(found=True, deleted_at=state.deleted_at)
            await session.execute(
                update(m.__table__)
                .where(*_key_clause(kind, owner, file_id, item_id))
                .values(deleted_at=now, updated_at=now)
            )
            if not kind.has_item_id:
                for child in ITEM_KINDS:
                    c = child.model
                    result = await session.execute(
                        update(c.__table__)
                        .where(c.username == owner, c.file_id == file_id, c.deleted_at.is_(None))
                        .values(deleted_at=now, updated_at=now)
                    )
                    if result.rowcount:
                        log.info(
                            "soft_delete cascade kind=%s user=%s file_id=%s rows=%d",
                            child.name, owner, file_id, result.rowcount,
                        )
        return DeleteResult(found=True, deleted_at=now)

    async def changes_since(
        self, kind: EntityKind, owner: str, since: int, limit: int
    ) -> ChangePage:
        """
        Up to limit rows with coalesce(deleted_at, updated_at) >= since, ordered by that
        timestamp, then file id, then item id.

        next_since is the timestamp of the first row not returned when more exist, else
        the timestamp of the last row returned, else since. Either way the boundary
        timestamp is fetched again by the next call, so rows sharing it are never
        skipped; a client may see the boundary rows twice. When more than limit rows share
        one timestamp the cursor cannot move past them, and the client must ask again
        with a larger limit.
        """
        m = kind.model
        ts = func.coalesce(m.deleted_at, m.updated_at)
        order = [ts.asc(), m.file_id.asc()]
        if kind.has_item_id:
            order.append(m.item_id.asc())
        stmt = (
            select(m)
            .where(m.username == owner, ts >= since)
            .order_by(*order)
            .limit(limit + 1)
        )
        async with session_scope(self._session_factory) as session:
            result = await session.execute(stmt)
            fetched = [_to_row(kind, obj) for obj in result.scalars().all()]

        page = fetched[:limit]
        if len(fetched) > limit:
            next_since = fetched[limit].change_ts
        elif page:
            next_since = page[-1].change_ts
        else:
            next_since = since
        return ChangePage(rows=page, next_since=next_since)

    @staticmethod
    async def _state(
        session: AsyncSession, kind: EntityKind, owner: str, file_id: str, item_id: Optional[int]
    ) -> RowState:
        m = kind.model
        result = await session.execute(
            select(m.updated_at, m.deleted_at).where(*_key_clause(kind, owner, file_id, item_id))
        )
        row = result.first()
        if row is None:
            return ABSENT
        updated_at, deleted_at = row
        if deleted_at is not None:
            return RowState(RowStatus.TOMBSTONED, updated_at=updated_at, deleted_at=deleted_at)
        return RowState(RowStatus.LIVE, updated_at=updated_at)


def _require_item_id(kind: EntityKind, item_id: Optional[int]) -> None:
    if kind.has_item_id and item_id is None:
        raise ValueError(f"{kind.name} records need an item id")


def _pk_columns(kind: EntityKind) -> Tuple[str, ...]:
    if kind.has_item_id:
        return ("username", "file_id", "item_id")
    return ("username", "file_id")


def _key_clause(kind: EntityKind, owner: str, file_id: str, item_id: Optional[int]) -> list:
    m = kind.model
    clauses = [m.username == owner, m.file_id == file_id]
    if kind.has_item_id and item_id is not None:
        clauses.append(m.item_id == item_id)
    return clauses


def _to_row(kind: EntityKind, obj) -> SyncedRow:
    return SyncedRow(
        file_id=obj.file_id,
        item_id=obj.item_id if kind.has_item_id else None,
        payload={f: getattr(obj, f) for f in kind.payload_fields},
        updated_at=obj.updated_at,
        deleted_at=obj.deleted_at,
    )
