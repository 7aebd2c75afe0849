"""SQLAlchemy models for synced per-user records (progress, bookmarks, highlights, notes)."""

from typing import Optional

from sqlalchemy import BigInteger, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, declared_attr, mapped_column

from readersync.db.session import Base


class TombstonedRecord:
    """
    Columns shared by every synced table. deleted_at NULL = live; non-NULL = tombstone.
    Tombstoned rows are kept forever so deletions replicate to other devices.
    """

    @declared_attr
    def username(cls) -> Mapped[str]:
        return mapped_column(
            String(255),
            ForeignKey("users.username", ondelete="CASCADE"),
            primary_key=True,
        )

    @declared_attr
    def file_id(cls) -> Mapped[str]:
        return mapped_column(
            String(64),
            ForeignKey("books.file_id", ondelete="RESTRICT"),
            primary_key=True,
        )

    updated_at: Mapped[int] = mapped_column(BigInteger, nullable=False)  # epoch ms
    deleted_at: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)

    @declared_attr.directive
    def __table_args__(cls):
        return (
            Index(f"idx_{cls.__tablename__}_user_updated", "username", "updated_at"),
            Index(f"idx_{cls.__tablename__}_user_deleted", "username", "deleted_at"),
        )


class UserBook(TombstonedRecord, Base):
    """Reading progress for one book; one row per (user, book)."""

    __tablename__ = "user_books"

    progress: Mapped[Optional[str]] = mapped_column(Text, nullable=True)  # client JSON blob


class UserBookmark(TombstonedRecord, Base):
    __tablename__ = "user_bookmarks"

    item_id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=False)
    locator: Mapped[str] = mapped_column(Text, nullable=False)
    label: Mapped[Optional[str]] = mapped_column(Text, nullable=True)


class UserHighlight(TombstonedRecord, Base):
    __tablename__ = "user_highlights"

    item_id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=False)
    selection: Mapped[str] = mapped_column(Text, nullable=False)
    label: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    colour: Mapped[Optional[str]] = mapped_column(Text, nullable=True)


class UserNote(TombstonedRecord, Base):
    __tablename__ = "user_notes"

    item_id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=False)
    locator: Mapped[str] = mapped_column(Text, nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
