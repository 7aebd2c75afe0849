"""SQLAlchemy model for stored book files."""

from sqlalchemy import BigInteger, CheckConstraint, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from readersync.db.session import Base


class BookAsset(Base):
    """One physical book file. (content_hash, size) identifies the bytes; file_id never changes."""

    __tablename__ = "books"
    __table_args__ = (
        UniqueConstraint("content_hash", "size", name="uq_books_content_hash_size"),
        CheckConstraint("length(content_hash) = 64", name="ck_books_content_hash_len"),
        CheckConstraint("size >= 0", name="ck_books_size"),
    )

    file_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    content_hash: Mapped[str] = mapped_column(String(64), nullable=False)  # SHA-256 hex
    size: Mapped[int] = mapped_column(BigInteger, nullable=False)
    location: Mapped[str] = mapped_column(Text, nullable=False)
    # Name the uploading client used; sent back on download
    client_file_name: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[int] = mapped_column(BigInteger, nullable=False)  # epoch ms
