"""Unit tests for Database handles."""

from __future__ import annotations

import gc
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Generator

import pytest
from pydantic import BaseModel

from db_env.application import Database, Environment
from db_env.domain.errors import EngineError, ReadOnlyViolationError, TransactionStateError
from db_env.domain.value_objects import CursorStatus, SeekMode


class WalletKey(BaseModel):
    pubkey: str
    created_at: int


@pytest.fixture
def db(env: Environment) -> Generator[Database, None, None]:
    handle = Database(env, "test.db", "cr+")
    yield handle
    handle.close()


@pytest.mark.unit
class TestReadWrite:
    """Typed record operations."""

    @pytest.mark.parametrize(
        ("key", "value"),
        [
            ("name", "alice"),
            (("pool", 3), 1700000000),
            (b"\x01raw", b"\x00\xff"),
            (42, 3.25),
            ("flags", [True, False]),
            ("meta", {"label": "savings", "tags": ["a", "b"]}),
        ],
    )
    def test_round_trip(self, db: Database, key: Any, value: Any) -> None:
        assert db.write(key, value)
        assert db.read(key) == value

    def test_round_trip_typed(self, db: Database) -> None:
        record = WalletKey(pubkey="02ab", created_at=1700000000)
        assert db.write(("key", "02ab"), record)
        assert db.read(("key", "02ab"), WalletKey) == record

        assert db.write("pair", ("a", 1))
        assert db.read("pair", tuple) == ("a", 1)

    def test_read_absent_returns_default(self, db: Database) -> None:
        assert db.read("missing") is None
        assert db.read("missing", default=-1) == -1

    def test_read_malformed_returns_default(self, db: Database) -> None:
        db.write("count", "not a number")
        assert db.read("count", int, default=-1) == -1

        db.write_raw(db._codec.encode("broken"), b"\xc1")
        assert db.read("broken", default="fallback") == "fallback"

    def test_overwrite(self, db: Database) -> None:
        db.write("k", "v1")
        assert db.write("k", "v2")
        assert db.read("k") == "v2"

    def test_no_overwrite_keeps_first_value(self, db: Database) -> None:
        assert db.write("k", "v1")
        assert not db.write("k", "v2", overwrite=False)
        assert db.read("k") == "v1"

    def test_no_overwrite_new_key(self, db: Database) -> None:
        assert db.write("fresh", 1, overwrite=False)

    def test_erase_is_idempotent(self, db: Database) -> None:
        assert db.erase("never-written")

        db.write("k", "v")
        assert db.erase("k")
        assert db.erase("k")
        assert not db.exists("k")

    def test_exists(self, db: Database) -> None:
        assert not db.exists("k")
        db.write("k", "v")
        assert db.exists("k")

    @pytest.mark.parametrize("mode", ["", "x", "rq"])
    def test_invalid_mode(self, env: Environment, mode: str) -> None:
        with pytest.raises(ValueError):
            Database(env, "test.db", mode)

    def test_version(self, db: Database) -> None:
        assert db.read_version() is None
        assert db.write_version(80000)
        assert db.read_version() == 80000

    def test_version_zero_is_not_missing(self, db: Database) -> None:
        assert db.write_version(0)
        assert db.read_version() == 0
        assert db.read_version() is not None


@pytest.mark.unit
class TestReadOnly:
    """Read-only handles reject modifications."""

    def test_rejects_write_and_erase(self, env: Environment) -> None:
        with Database(env, "ro.db", "cr+") as writer:
            writer.write("k", "v")

        with Database(env, "ro.db", "r") as reader:
            assert reader.read_only
            with pytest.raises(ReadOnlyViolationError, match="write called"):
                reader.write("k", "changed")
            with pytest.raises(ReadOnlyViolationError, match="erase called"):
                reader.erase("k")
            with pytest.raises(ReadOnlyViolationError):
                reader.write_raw(b"k", b"v")
            assert reader.read("k") == "v"

        with Database(env, "ro.db") as again:
            assert again.read("k") == "v"

    def test_read_only_transaction(self, env: Environment) -> None:
        with Database(env, "ro.db", "cr+") as writer:
            writer.write("k", "v")

        with Database(env, "ro.db", "r") as reader:
            assert reader.txn_begin()
            assert reader.read("k") == "v"
            assert reader.txn_commit()


@pytest.mark.unit
class TestTransactions:
    """Single active transaction per handle."""

    def test_double_begin_fails(self, db: Database) -> None:
        assert db.txn_begin()
        assert not db.txn_begin()
        assert db.txn_abort()

    def test_commit_or_abort_without_begin(self, db: Database) -> None:
        assert not db.txn_commit()
        assert not db.txn_abort()

    def test_commit_persists(self, db: Database, env: Environment) -> None:
        assert db.txn_begin()
        db.write("a", 1)
        db.write("b", 2)

        with Database(env, "test.db") as other:
            assert not other.exists("a")

        assert db.txn_commit()
        assert not db.in_transaction
        assert db.read("a") == 1
        assert db.read("b") == 2

    def test_abort_discards(self, db: Database) -> None:
        db.write("kept", 0)
        assert db.txn_begin()
        db.write("a", 1)
        db.erase("kept")
        assert db.read("a") == 1

        assert db.txn_abort()

        assert not db.exists("a")
        assert db.read("kept") == 0

    def test_transaction_context_commits(self, db: Database) -> None:
        with db.transaction():
            db.write("a", 1)
        assert db.read("a") == 1
        assert not db.in_transaction

    def test_transaction_context_aborts_on_error(self, db: Database) -> None:
        with pytest.raises(RuntimeError, match="boom"):
            with db.transaction():
                db.write("a", 1)
                raise RuntimeError("boom")
        assert not db.exists("a")
        assert not db.in_transaction

    def test_transaction_context_when_already_active(self, db: Database) -> None:
        db.txn_begin()
        with pytest.raises(TransactionStateError):
            with db.transaction():
                pass
        db.txn_abort()

    def test_close_aborts_active_transaction(self, env: Environment) -> None:
        db = Database(env, "t.db", "cr+")
        db.txn_begin()
        db.write("a", 1)
        db.close()

        with Database(env, "t.db") as reopened:
            assert not reopened.exists("a")


@pytest.mark.unit
class TestClosedHandle:
    """Operations on a closed handle fail without raising."""

    def test_operations_fail(self, env: Environment) -> None:
        db = Database(env, "closed.db", "cr+")
        db.close()

        assert not db.is_open
        assert not db.write("k", "v")
        assert not db.erase("k")
        assert not db.exists("k")
        assert db.read("k", default="d") == "d"
        assert not db.txn_begin()
        assert db.get_cursor() is None
        assert list(db.records()) == []
        assert "closed" in repr(db)


@pytest.mark.unit
class TestAbandonedHandle:
    """Handles collected without close() give back their registration."""

    def test_collected_handle_is_released(self, env: Environment) -> None:
        db = Database(env, "lost.db", "cr+")
        assert db.write("k", "v")
        assert env.use_count("lost.db") == 1

        del db
        gc.collect()

        assert env.use_count("lost.db") == 0
        env.flush(shutdown=True)
        assert not env.is_open

    def test_closed_handle_is_not_released_twice(self, env: Environment) -> None:
        first = Database(env, "kept.db", "cr+")
        first.close()
        second = Database(env, "kept.db")

        del first
        gc.collect()

        assert env.use_count("kept.db") == 1
        second.close()


class FakeCursor:
    def __init__(self, record: Any) -> None:
        self.record = record

    def get(self, mode: SeekMode, key: bytes | None = None, value: bytes | None = None) -> Any:
        return self.record

    def close(self) -> None:
        pass


class FailingCursor(FakeCursor):
    def get(self, mode: SeekMode, key: bytes | None = None, value: bytes | None = None) -> Any:
        raise EngineError("page checksum mismatch")


@pytest.mark.unit
class TestCursor:
    """Cursor reads through the handle."""

    @pytest.fixture
    def filled(self, db: Database) -> Database:
        for key in ("a1", "a2", "b1"):
            db.write(key, key.upper())
        return db

    def test_iterate_with_next(self, filled: Database) -> None:
        codec = filled._codec
        cursor = filled.get_cursor()
        key, value = bytearray(), bytearray()
        seen = []
        try:
            while filled.read_at_cursor(cursor, key, value) == CursorStatus.OK:
                seen.append((codec.decode(bytes(key)), codec.decode(bytes(value))))
            assert filled.read_at_cursor(cursor, key, value) == CursorStatus.NOT_FOUND
        finally:
            cursor.close()

        assert seen == [("a1", "A1"), ("a2", "A2"), ("b1", "B1")]

    def test_seek_modes(self, filled: Database) -> None:
        codec = filled._codec
        cursor = filled.get_cursor()
        try:
            key = bytearray(codec.encode("a2"))
            value = bytearray()
            assert filled.read_at_cursor(cursor, key, value, SeekMode.SET) == CursorStatus.OK
            assert codec.decode(bytes(value)) == "A2"

            key = bytearray(codec.encode("a3"))
            assert filled.read_at_cursor(cursor, key, value, SeekMode.SET) == CursorStatus.NOT_FOUND
            assert codec.decode(bytes(key)) == "a3"  # untouched on failure

            assert filled.read_at_cursor(cursor, key, value, SeekMode.SET_RANGE) == CursorStatus.OK
            assert codec.decode(bytes(key)) == "b1"

            key = bytearray(codec.encode("a1"))
            value = bytearray(codec.encode("A1"))
            assert filled.read_at_cursor(cursor, key, value, SeekMode.GET_BOTH) == CursorStatus.OK

            value = bytearray(codec.encode("nope"))
            assert filled.read_at_cursor(cursor, key, value, SeekMode.GET_BOTH) == CursorStatus.NOT_FOUND
        finally:
            cursor.close()

    def test_cursor_in_transaction_sees_uncommitted(self, filled: Database) -> None:
        filled.txn_begin()
        filled.write("c1", "C1")
        keys = [filled._codec.decode(k) for k, _ in filled.records()]
        filled.txn_abort()

        assert keys == ["a1", "a2", "b1", "c1"]

    def test_records(self, filled: Database) -> None:
        codec = filled._codec
        assert [(codec.decode(k), codec.decode(v)) for k, v in filled.records()] == [
            ("a1", "A1"),
            ("a2", "A2"),
            ("b1", "B1"),
        ]

    def test_malformed_entry(self, db: Database) -> None:
        key, value = bytearray(b"k"), bytearray(b"v")
        status = db.read_at_cursor(FakeCursor((None, b"x")), key, value)

        assert status == CursorStatus.MALFORMED
        assert (key, value) == (bytearray(b"k"), bytearray(b"v"))

    def test_engine_error(self, db: Database) -> None:
        key, value = bytearray(), bytearray()
        assert db.read_at_cursor(FailingCursor(None), key, value) == CursorStatus.ERROR


@pytest.mark.unit
class TestConcurrentHandles:
    """Handles used from several threads."""

    def test_parallel_writers(self, env: Environment) -> None:
        def worker(n: int) -> bool:
            with Database(env, "shared.db", "cr+") as db:
                with db.transaction():
                    return all(db.write(("item", n, i), i) for i in range(20))

        with ThreadPoolExecutor(max_workers=4) as pool:
            assert all(pool.map(worker, range(8)))

        assert env.use_count("shared.db") == 0
        with Database(env, "shared.db") as db:
            assert len(list(db.records())) == 160
            assert db.read(("item", 7, 19)) == 19
