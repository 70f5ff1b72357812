"""Tests for the key-value store adapter.

Tests cover:
- Bucket read/write/delete and scan order
- Integer id allocation
- Index term -> targets with windows, single-term replacement and removal
- Transaction rules: read-only reads, uncommitted writes roll back,
  exceptions roll back and propagate
"""

import threading

import pytest

from hearth.db.records import (
    CHAT_MESSAGES,
    CHAT_MESSAGES_BY_FAMILY,
    PUSH_DEVICE_TOKEN_BY_TOKEN,
    USERS,
    ChatMessage,
    User,
)
from hearth.db.store import INT_CODEC, ReadOnlyTransactionError, Store, Window


def _message(message_id: int, family_id: int = 7, content: str = "hi") -> ChatMessage:
    return ChatMessage(
        id=message_id, family_id=family_id, user_id=10, user_name="Ada", content=content
    )


class TestBuckets:
    """Tests for bucket reads and writes."""

    def test_write_then_read(self, store: Store):
        """A committed value is visible to later transactions."""
        with store.write_tx() as tx:
            tx.write(USERS, 1, User(id=1, name="Ada", email="ada@example.com", family_id=7))
            tx.commit()

        with store.read_tx() as tx:
            user = tx.read(USERS, 1)

        assert user is not None
        assert user.name == "Ada"
        assert user.family_id == 7

    def test_read_missing_returns_none(self, store: Store):
        """Absent keys read as None."""
        with store.read_tx() as tx:
            assert tx.read(USERS, 404) is None

    def test_write_replaces_existing_value(self, store: Store):
        """Writing the same key twice keeps the last value."""
        with store.write_tx() as tx:
            tx.write(CHAT_MESSAGES, 1, _message(1, content="first"))
            tx.write(CHAT_MESSAGES, 1, _message(1, content="second"))
            tx.commit()

        with store.read_tx() as tx:
            assert tx.read(CHAT_MESSAGES, 1).content == "second"

    def test_delete(self, store: Store):
        """Deleted keys read as None; deleting a missing key is a no-op."""
        with store.write_tx() as tx:
            tx.write(CHAT_MESSAGES, 1, _message(1))
            tx.commit()

        with store.write_tx() as tx:
            tx.delete(CHAT_MESSAGES, 1)
            tx.delete(CHAT_MESSAGES, 99)
            tx.commit()

        with store.read_tx() as tx:
            assert tx.read(CHAT_MESSAGES, 1) is None

    def test_scan_is_in_key_order(self, store: Store):
        """Integer keys scan in numeric order."""
        with store.write_tx() as tx:
            for message_id in (300, 2, 17):
                tx.write(CHAT_MESSAGES, message_id, _message(message_id))
            tx.commit()

        with store.read_tx() as tx:
            keys = [key for key, _ in tx.scan(CHAT_MESSAGES)]

        assert keys == [2, 17, 300]

    def test_string_keyed_bucket(self, store: Store):
        """The token lookup bucket maps strings to ids."""
        with store.write_tx() as tx:
            tx.write(PUSH_DEVICE_TOKEN_BY_TOKEN, "abcd", 50)
            tx.commit()

        with store.read_tx() as tx:
            assert tx.read(PUSH_DEVICE_TOKEN_BY_TOKEN, "abcd") == 50
            assert tx.read(PUSH_DEVICE_TOKEN_BY_TOKEN, "dcba") is None

    def test_negative_integer_keys_rejected(self):
        """Integer keys are unsigned."""
        with pytest.raises(ValueError):
            INT_CODEC.encode(-1)


class TestIdAllocation:
    """Tests for next_int_id."""

    def test_ids_start_at_one_and_increase(self, store: Store):
        """Each bucket has its own sequence starting at 1."""
        with store.write_tx() as tx:
            assert tx.next_int_id(CHAT_MESSAGES) == 1
            assert tx.next_int_id(CHAT_MESSAGES) == 2
            assert tx.next_int_id(USERS) == 1
            tx.commit()

        with store.write_tx() as tx:
            assert tx.next_int_id(CHAT_MESSAGES) == 3
            tx.commit()

    def test_uncommitted_allocation_is_rolled_back(self, store: Store):
        """An id allocated in an abandoned transaction is handed out again."""
        with store.write_tx() as tx:
            assert tx.next_int_id(CHAT_MESSAGES) == 1

        with store.write_tx() as tx:
            assert tx.next_int_id(CHAT_MESSAGES) == 1


class TestIndexes:
    """Tests for term -> target indexes."""

    def _index_messages(self, store: Store, family_id: int, ids: list[int]) -> None:
        with store.write_tx() as tx:
            for message_id in ids:
                tx.set_target_single_term(CHAT_MESSAGES_BY_FAMILY, message_id, family_id)
            tx.commit()

    def test_targets_ordered_ascending(self, store: Store):
        """Targets come back ordered by target id."""
        self._index_messages(store, 7, [5, 1, 3])

        with store.read_tx() as tx:
            assert tx.read_term_targets(CHAT_MESSAGES_BY_FAMILY, 7) == [1, 3, 5]

    def test_window_reverse_limit_offset(self, store: Store):
        """Windows page from either end."""
        self._index_messages(store, 7, [1, 2, 3, 4, 5])

        with store.read_tx() as tx:
            newest = tx.read_term_targets(
                CHAT_MESSAGES_BY_FAMILY, 7, Window(limit=2, reverse=True)
            )
            next_page = tx.read_term_targets(
                CHAT_MESSAGES_BY_FAMILY, 7, Window(limit=2, offset=2, reverse=True)
            )

        assert newest == [5, 4]
        assert next_page == [3, 2]

    def test_terms_are_isolated(self, store: Store):
        """Targets under one term are not visible under another."""
        self._index_messages(store, 7, [1, 2])
        self._index_messages(store, 8, [3])

        with store.read_tx() as tx:
            assert tx.read_term_targets(CHAT_MESSAGES_BY_FAMILY, 7) == [1, 2]
            assert tx.read_term_targets(CHAT_MESSAGES_BY_FAMILY, 8) == [3]
            assert tx.read_term_targets(CHAT_MESSAGES_BY_FAMILY, 9) == []

    def test_single_term_replaces_previous_term(self, store: Store):
        """Re-pointing a target moves it to the new term."""
        self._index_messages(store, 7, [1])
        self._index_messages(store, 8, [1])

        with store.read_tx() as tx:
            assert tx.read_term_targets(CHAT_MESSAGES_BY_FAMILY, 7) == []
            assert tx.read_term_targets(CHAT_MESSAGES_BY_FAMILY, 8) == [1]

    def test_none_term_removes_target(self, store: Store):
        """term=None drops the target from the index."""
        self._index_messages(store, 7, [1, 2])

        with store.write_tx() as tx:
            tx.set_target_single_term(CHAT_MESSAGES_BY_FAMILY, 1, None)
            tx.commit()

        with store.read_tx() as tx:
            assert tx.read_term_targets(CHAT_MESSAGES_BY_FAMILY, 7) == [2]

    def test_same_term_twice_is_idempotent(self, store: Store):
        """Setting the same term again leaves one entry."""
        self._index_messages(store, 7, [1])
        self._index_messages(store, 7, [1])

        with store.read_tx() as tx:
            assert tx.read_term_targets(CHAT_MESSAGES_BY_FAMILY, 7) == [1]


class TestTransactions:
    """Tests for transaction rules."""

    def test_read_tx_rejects_mutation(self, store: Store):
        """Writes inside a read transaction raise."""
        with store.read_tx() as tx:
            with pytest.raises(ReadOnlyTransactionError):
                tx.write(CHAT_MESSAGES, 1, _message(1))
            with pytest.raises(ReadOnlyTransactionError):
                tx.next_int_id(CHAT_MESSAGES)

    def test_write_without_commit_rolls_back(self, store: Store):
        """Leaving the block without commit() discards the writes."""
        with store.write_tx() as tx:
            tx.write(CHAT_MESSAGES, 1, _message(1))

        with store.read_tx() as tx:
            assert tx.read(CHAT_MESSAGES, 1) is None

    def test_exception_rolls_back_and_propagates(self, store: Store):
        """An exception in the block aborts the transaction."""
        with pytest.raises(RuntimeError, match="boom"):
            with store.write_tx() as tx:
                tx.write(CHAT_MESSAGES, 1, _message(1))
                raise RuntimeError("boom")

        with store.read_tx() as tx:
            assert tx.read(CHAT_MESSAGES, 1) is None

    def test_no_writes_after_commit(self, store: Store):
        """A committed transaction cannot be reused."""
        with store.write_tx() as tx:
            tx.commit()
            with pytest.raises(RuntimeError):
                tx.write(CHAT_MESSAGES, 1, _message(1))

    def test_reader_does_not_see_uncommitted_write(self, store: Store):
        """A read transaction running during a write sees the last commit."""
        started = threading.Event()
        release = threading.Event()

        def writer():
            with store.write_tx() as tx:
                tx.write(CHAT_MESSAGES, 1, _message(1))
                started.set()
                release.wait(5)
                tx.commit()

        thread = threading.Thread(target=writer)
        thread.start()
        try:
            assert started.wait(5)
            with store.read_tx() as tx:
                assert tx.read(CHAT_MESSAGES, 1) is None
        finally:
            release.set()
            thread.join(5)

        with store.read_tx() as tx:
            assert tx.read(CHAT_MESSAGES, 1) is not None

    def test_read_tx_keeps_its_snapshot(self, store: Store):
        """A commit landing mid-transaction is not seen by the open reader."""
        with store.write_tx() as tx:
            tx.write(CHAT_MESSAGES, 1, _message(1, content="old"))
            tx.commit()

        def writer():
            with store.write_tx() as tx:
                tx.write(CHAT_MESSAGES, 1, _message(1, content="new"))
                tx.set_target_single_term(CHAT_MESSAGES_BY_FAMILY, 1, 7)
                tx.commit()

        with store.read_tx() as tx:
            assert tx.read(CHAT_MESSAGES, 1).content == "old"
            thread = threading.Thread(target=writer)
            thread.start()
            thread.join(5)
            assert not thread.is_alive()

            assert tx.read(CHAT_MESSAGES, 1).content == "old"
            assert tx.read_term_targets(CHAT_MESSAGES_BY_FAMILY, 7) == []

        with store.read_tx() as tx:
            assert tx.read(CHAT_MESSAGES, 1).content == "new"
            assert tx.read_term_targets(CHAT_MESSAGES_BY_FAMILY, 7) == [1]

    def test_writers_are_serialized(self, store: Store):
        """Concurrent writers never allocate the same id."""
        allocated: list[int] = []
        lock = threading.Lock()

        def allocate():
            for _ in range(10):
                with store.write_tx() as tx:
                    new_id = tx.next_int_id(CHAT_MESSAGES)
                    tx.commit()
                with lock:
                    allocated.append(new_id)

        threads = [threading.Thread(target=allocate) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(10)

        assert sorted(allocated) == list(range(1, 41))

    def test_reopen_keeps_data(self, settings, tmp_path):
        """Data survives closing and reopening the store file."""
        path = str(tmp_path / "reopen.db")
        first = Store.open(path)
        with first.write_tx() as tx:
            tx.write(CHAT_MESSAGES, 1, _message(1))
            tx.commit()
        first.close()

        second = Store.open(path)
        try:
            with second.read_tx() as tx:
                assert tx.read(CHAT_MESSAGES, 1).content == "hi"
        finally:
            second.close()
