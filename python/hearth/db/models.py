"""SQLAlchemy ORM models backing the key-value store.

The store exposes buckets and indexes; these three tables hold them.
Keys, terms and targets are stored as order-preserving byte strings so
range scans come back in key order.
"""

from sqlalchemy import BigInteger, Index, LargeBinary, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


# =============================================================================
# Buckets
# =============================================================================


class KvRecord(Base):
    """One key -> packed value entry in a named bucket."""

    __tablename__ = "kv_records"

    bucket: Mapped[str] = mapped_column(String(64), primary_key=True)
    key: Mapped[bytes] = mapped_column(LargeBinary, primary_key=True)
    value: Mapped[bytes] = mapped_column(LargeBinary, nullable=False)


class KvSequence(Base):
    """Last integer id handed out per bucket."""

    __tablename__ = "kv_sequences"

    bucket: Mapped[str] = mapped_column(String(64), primary_key=True)
    last_id: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)


# =============================================================================
# Indexes
# =============================================================================


class KvIndexEntry(Base):
    """One term -> target pair in a named index.

    A target may appear under several terms in a multimap index, but the
    single-term setter keeps at most one row per (index_name, target).
    """

    __tablename__ = "kv_index"

    index_name: Mapped[str] = mapped_column(String(64), primary_key=True)
    term: Mapped[bytes] = mapped_column(LargeBinary, primary_key=True)
    target: Mapped[bytes] = mapped_column(LargeBinary, primary_key=True)

    __table_args__ = (Index("ix_kv_index_target", "index_name", "target"),)
