"""Key-value store adapter over SQLAlchemy.

Provides:
- Bucket / Index descriptors binding a name to key and value codecs
- Store: owns the engine and hands out read and write transactions
- Tx: read, write, delete, next_int_id, read_term_targets,
  set_target_single_term, scan and commit

Transaction rules:
- Any number of read transactions may run concurrently, including alongside
  the single active write transaction.
- A read transaction sees one snapshot: commits made after its first read
  stay invisible until it ends.
- Write transactions are serialized by a process-wide lock.
- A write block that exits without calling commit() is rolled back.
- An exception inside a write block rolls back and propagates.

Usage:
    with store.write_tx() as tx:
        image_id = tx.next_int_id(IMAGES)
        tx.write(IMAGES, image_id, record)
        tx.commit()
"""

import struct
import threading
from collections.abc import Callable, Generator, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from sqlalchemy import delete, select
from sqlalchemy.dialects.sqlite import insert
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from hearth.db.engine import create_db_engine
from hearth.db.models import Base, KvIndexEntry, KvRecord, KvSequence
from hearth.logging import get_logger

logger = get_logger(__name__)

K = TypeVar("K")
V = TypeVar("V")
T = TypeVar("T")

_U64 = struct.Struct(">Q")


# =============================================================================
# Codecs
# =============================================================================


@dataclass(frozen=True)
class Codec(Generic[T]):
    """Pair of functions converting a value to and from bytes."""

    encode: Callable[[T], bytes]
    decode: Callable[[bytes], T]


def _encode_uint(value: int) -> bytes:
    if value < 0:
        raise ValueError(f"integer keys must be non-negative, got {value}")
    return _U64.pack(value)


def _decode_uint(data: bytes) -> int:
    return _U64.unpack(data)[0]


# Big-endian so byte order matches numeric order
INT_CODEC: Codec[int] = Codec(_encode_uint, _decode_uint)
STR_CODEC: Codec[str] = Codec(lambda s: s.encode("utf-8"), lambda b: b.decode("utf-8"))


@dataclass(frozen=True)
class Bucket(Generic[K, V]):
    """A named key -> value map."""

    name: str
    key: Codec[K]
    value: Codec[V]


@dataclass(frozen=True)
class Index(Generic[K, T]):
    """A named term -> target multimap."""

    name: str
    term: Codec[K]
    target: Codec[T]


@dataclass(frozen=True)
class Window:
    """Paging window for index reads.

    Attributes:
        limit: Maximum targets to return (0 means no limit).
        offset: Number of targets to skip.
        reverse: Return targets in descending order.
    """

    limit: int = 0
    offset: int = 0
    reverse: bool = False


class ReadOnlyTransactionError(RuntimeError):
    """A mutation was attempted inside a read transaction."""


# =============================================================================
# Transactions
# =============================================================================


class Tx:
    """A single store transaction.

    Created by Store.read_tx() / Store.write_tx(); do not construct directly.
    """

    def __init__(self, session: Session, writable: bool):
        self._session = session
        self.writable = writable
        self.committed = False

    def _require_writable(self) -> None:
        if not self.writable:
            raise ReadOnlyTransactionError("mutation attempted in a read transaction")
        if self.committed:
            raise RuntimeError("transaction already committed")

    def read(self, bucket: Bucket[K, V], key: K) -> V | None:
        """Return the decoded value for key, or None if absent."""
        row = self._session.execute(
            select(KvRecord.value).where(
                KvRecord.bucket == bucket.name, KvRecord.key == bucket.key.encode(key)
            )
        ).scalar_one_or_none()
        if row is None:
            return None
        return bucket.value.decode(row)

    def write(self, bucket: Bucket[K, V], key: K, value: V) -> None:
        """Insert or replace the value stored under key."""
        self._require_writable()
        encoded = bucket.value.encode(value)
        stmt = insert(KvRecord).values(
            bucket=bucket.name, key=bucket.key.encode(key), value=encoded
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[KvRecord.bucket, KvRecord.key],
            set_={"value": encoded},
        )
        self._session.execute(stmt)

    def delete(self, bucket: Bucket[K, Any], key: K) -> None:
        """Remove key from the bucket. Missing keys are ignored."""
        self._require_writable()
        self._session.execute(
            delete(KvRecord).where(
                KvRecord.bucket == bucket.name, KvRecord.key == bucket.key.encode(key)
            )
        )

    def scan(self, bucket: Bucket[K, V]) -> Iterator[tuple[K, V]]:
        """Iterate every (key, value) pair in key order."""
        rows = self._session.execute(
            select(KvRecord.key, KvRecord.value)
            .where(KvRecord.bucket == bucket.name)
            .order_by(KvRecord.key)
        )
        for key, value in rows:
            yield bucket.key.decode(key), bucket.value.decode(value)

    def next_int_id(self, bucket: Bucket[int, Any]) -> int:
        """Allocate the next integer id for a bucket (starting at 1)."""
        self._require_writable()
        seq = self._session.get(KvSequence, bucket.name)
        if seq is None:
            seq = KvSequence(bucket=bucket.name, last_id=0)
            self._session.add(seq)
        seq.last_id += 1
        self._session.flush()
        return seq.last_id

    def read_term_targets(
        self, index: Index[K, T], term: K, window: Window | None = None
    ) -> list[T]:
        """Return the targets stored under term, ordered by target."""
        window = window or Window()
        order = KvIndexEntry.target.desc() if window.reverse else KvIndexEntry.target.asc()
        stmt = (
            select(KvIndexEntry.target)
            .where(
                KvIndexEntry.index_name == index.name,
                KvIndexEntry.term == index.term.encode(term),
            )
            .order_by(order)
        )
        if window.offset:
            stmt = stmt.offset(window.offset)
        if window.limit:
            stmt = stmt.limit(window.limit)
        return [index.target.decode(t) for t in self._session.execute(stmt).scalars()]

    def set_target_single_term(self, index: Index[K, T], target: T, term: K | None) -> None:
        """Point target at exactly one term, replacing any prior term.

        Passing term=None removes the target from the index.
        """
        self._require_writable()
        encoded_target = index.target.encode(target)
        self._session.execute(
            delete(KvIndexEntry).where(
                KvIndexEntry.index_name == index.name,
                KvIndexEntry.target == encoded_target,
            )
        )
        if term is not None:
            self._session.execute(
                insert(KvIndexEntry)
                .values(index_name=index.name, term=index.term.encode(term), target=encoded_target)
                .on_conflict_do_nothing()
            )

    def commit(self) -> None:
        """Commit all writes made in this transaction."""
        self._require_writable()
        self._session.commit()
        self.committed = True


# =============================================================================
# Store
# =============================================================================


class Store:
    """Embedded key-value store.

    Args:
        engine: SQLAlchemy engine. Use Store.open() to build one from a path.
    """

    def __init__(self, engine: Engine):
        self.engine = engine
        self._session_factory = sessionmaker(
            bind=engine,
            autocommit=False,
            autoflush=False,
            expire_on_commit=False,
        )
        self._write_lock = threading.Lock()

    @classmethod
    def open(cls, database_path: str) -> "Store":
        """Open (creating if needed) the store at database_path."""
        engine = create_db_engine(database_path)
        Base.metadata.create_all(engine)
        logger.info("kv_store_opened", database_path=database_path)
        return cls(engine)

    def close(self) -> None:
        """Dispose of pooled connections."""
        self.engine.dispose()

    @contextmanager
    def read_tx(self) -> Generator[Tx, None, None]:
        """Open a read transaction.

        Every read in the block sees the same committed state, fixed by the
        first statement.
        """
        session = self._session_factory()
        try:
            session.connection()
            yield Tx(session, writable=False)
        finally:
            session.rollback()
            session.close()

    @contextmanager
    def write_tx(self) -> Generator[Tx, None, None]:
        """Open the write transaction, waiting for any other writer to finish.

        Raises:
            Re-raises any exception from the block after rollback.
        """
        with self._write_lock:
            session = self._session_factory()
            tx = Tx(session, writable=True)
            try:
                session.connection()
                yield tx
                if not tx.committed:
                    session.rollback()
            except Exception:
                session.rollback()
                raise
            finally:
                session.close()
