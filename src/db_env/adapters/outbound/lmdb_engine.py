"""LMDB implementation of the StorageEngine port.

Each named database file is one LMDB data file (``subdir=False``) in the
environment directory, next to its ``<name>-lock`` reader table.

File Layout:
    <directory>/<name>          data pages (copy-on-write B+tree)
    <directory>/<name>-lock     reader/writer lock table

Durability:
    Environments are opened with ``sync=False`` and ``metasync=False`` so a
    commit hands pages to the OS without forcing them to disk
    (WRITE_NOSYNC). SYNC transactions and checkpoints call ``sync(True)``.
    LMDB has no separate knob for NOSYNC, so it behaves as WRITE_NOSYNC.

Thread Safety:
    LMDB serializes writers per file and never blocks readers. A write
    transaction must be committed or aborted on the thread that began it.
    The lmdb binding always opens environments with MDB_NOTLS, so one
    thread may hold a read transaction and a write transaction together.

References:
    - LMDB documentation: http://www.lmdb.tech/doc/
    - py-lmdb documentation: https://lmdb.readthedocs.io/
"""

from __future__ import annotations

import os
import shutil
import tempfile
import threading
from pathlib import Path
from typing import Any, Callable, Iterator, TypeVar

import lmdb

from db_env.domain.errors import CorruptFileError, EngineError, SalvageUnavailableError
from db_env.domain.value_objects import Durability, KeyValPair, SeekMode
from db_env.infrastructure.logging import get_logger

T = TypeVar("T")

LOCK_SUFFIX = "-lock"
DEFAULT_MAP_SIZE = 1 << 30

logger = get_logger(__name__)


class LmdbTransaction:
    """LMDB transaction with a commit durability."""

    def __init__(
        self,
        env: lmdb.Environment,
        native: lmdb.Transaction,
        writable: bool,
        durability: Durability,
    ) -> None:
        self._env = env
        self.native = native
        self._writable = writable
        self._durability = durability

    @property
    def writable(self) -> bool:
        return self._writable

    def commit(self) -> None:
        try:
            self.native.commit()
            if self._writable and self._durability is Durability.SYNC:
                self._env.sync(True)
        except lmdb.Error as exc:
            raise EngineError(f"commit failed: {exc}") from exc

    def abort(self) -> None:
        try:
            self.native.abort()
        except lmdb.Error as exc:
            raise EngineError(f"abort failed: {exc}") from exc


class LmdbCursor:
    """Cursor over one LMDB file, optionally owning its read transaction."""

    def __init__(self, cursor: lmdb.Cursor, owned_txn: lmdb.Transaction | None = None) -> None:
        self._cursor = cursor
        self._owned_txn = owned_txn

    def get(
        self, mode: SeekMode, key: bytes | None = None, value: bytes | None = None
    ) -> tuple[bytes | None, bytes | None] | None:
        try:
            if mode is SeekMode.NEXT:
                found = self._cursor.next()
            elif mode is SeekMode.SET:
                found = self._cursor.set_key(key)
            elif mode is SeekMode.SET_RANGE:
                found = self._cursor.set_range(key)
            else:
                found = self._cursor.set_key(key)
                if found:
                    current = self._cursor.value()
                    if mode is SeekMode.GET_BOTH:
                        found = current == value
                    else:
                        found = current >= value
            if not found:
                return None
            return self._cursor.key(), self._cursor.value()
        except lmdb.Error as exc:
            raise EngineError(f"cursor read failed: {exc}") from exc

    def close(self) -> None:
        self._cursor.close()
        if self._owned_txn is not None:
            self._owned_txn.abort()
            self._owned_txn = None


class LmdbHandle:
    """An open LMDB data file."""

    def __init__(self, name: str, env: lmdb.Environment, on_close: Callable[[str], None]) -> None:
        self._name = name
        self._env = env
        self._on_close = on_close

    @property
    def name(self) -> str:
        return self._name

    def begin(
        self, write: bool = True, durability: Durability = Durability.WRITE_NOSYNC
    ) -> LmdbTransaction:
        try:
            native = self._env.begin(write=write)
        except lmdb.Error as exc:
            raise EngineError(f"{self._name}: cannot begin transaction: {exc}") from exc
        return LmdbTransaction(self._env, native, write, durability)

    def _run(
        self,
        txn: LmdbTransaction | None,
        write: bool,
        op: Callable[[lmdb.Transaction], T],
    ) -> T:
        try:
            if txn is not None:
                return op(txn.native)
            with self._env.begin(write=write) as native:
                return op(native)
        except lmdb.Error as exc:
            raise EngineError(f"{self._name}: {exc}") from exc

    def get(self, txn: LmdbTransaction | None, key: bytes) -> bytes | None:
        return self._run(txn, False, lambda t: t.get(key))

    def put(
        self, txn: LmdbTransaction | None, key: bytes, value: bytes, overwrite: bool = True
    ) -> bool:
        return self._run(txn, True, lambda t: t.put(key, value, overwrite=overwrite))

    def delete(self, txn: LmdbTransaction | None, key: bytes) -> bool:
        return self._run(txn, True, lambda t: t.delete(key))

    def exists(self, txn: LmdbTransaction | None, key: bytes) -> bool:
        return self._run(txn, False, lambda t: t.cursor().set_key(key))

    def cursor(self, txn: LmdbTransaction | None) -> LmdbCursor:
        try:
            if txn is not None:
                return LmdbCursor(txn.native.cursor())
            native = self._env.begin(write=False)
            return LmdbCursor(native.cursor(), owned_txn=native)
        except lmdb.Error as exc:
            raise EngineError(f"{self._name}: cannot open cursor: {exc}") from exc

    def checkpoint(self) -> None:
        try:
            self._env.sync(True)
        except lmdb.Error as exc:
            raise EngineError(f"{self._name}: checkpoint failed: {exc}") from exc

    def close(self) -> None:
        self._env.close()
        self._on_close(self._name)


class LmdbStorageEngine:
    """Directory of LMDB data files sharing one configuration.

    Attributes:
        directory: Directory holding the data files.
        ephemeral: Whether the directory is discarded on close.
    """

    def __init__(
        self,
        directory: str | Path,
        map_size: int = DEFAULT_MAP_SIZE,
        max_readers: int = 126,
        ephemeral: bool = False,
    ) -> None:
        """Initialize the engine environment.

        Args:
            directory: Directory for data files, created if missing.
            map_size: Maximum size of each data file.
            max_readers: Reader slots per data file.
            ephemeral: Remove the directory when the engine closes.

        Raises:
            OSError: If the directory cannot be created.
        """
        self._directory = Path(directory)
        self._directory.mkdir(parents=True, exist_ok=True)
        self._map_size = map_size
        self._max_readers = max_readers
        self._ephemeral = ephemeral
        self._open_names: set[str] = set()
        self._lock = threading.Lock()

    @classmethod
    def create_ephemeral(cls, map_size: int = DEFAULT_MAP_SIZE) -> LmdbStorageEngine:
        """Create an engine in a private temporary directory."""
        return cls(tempfile.mkdtemp(prefix="db_env_mock_"), map_size=map_size, ephemeral=True)

    @property
    def directory(self) -> Path:
        return self._directory

    @property
    def ephemeral(self) -> bool:
        return self._ephemeral

    def _path(self, name: str) -> Path:
        if not name or Path(name).name != name or name.endswith(LOCK_SUFFIX):
            raise ValueError(f"Invalid database file name: {name!r}")
        return self._directory / name

    def _lock_path(self, name: str) -> Path:
        return self._directory / f"{name}{LOCK_SUFFIX}"

    def _open_env(self, path: Path, **kwargs: Any) -> lmdb.Environment:
        return lmdb.open(
            str(path),
            subdir=False,
            map_size=self._map_size,
            max_readers=self._max_readers,
            max_dbs=0,
            **kwargs,
        )

    def open(self, name: str, create: bool = False) -> LmdbHandle:
        path = self._path(name)
        if not create and not path.exists():
            raise EngineError(f"{name}: no such database file")

        try:
            env = self._open_env(path, create=create, sync=False, metasync=False)
            stale = env.reader_check()
        except lmdb.Error as exc:
            raise EngineError(f"{name}: cannot open: {exc}") from exc

        if stale:
            logger.info("stale_readers_cleared", file=name, count=stale)
        with self._lock:
            self._open_names.add(name)
        return LmdbHandle(name, env, self._forget)

    def _forget(self, name: str) -> None:
        with self._lock:
            self._open_names.discard(name)

    def exists(self, name: str) -> bool:
        return self._path(name).exists()

    def _open_read_only(self, path: Path) -> lmdb.Environment:
        return self._open_env(path, readonly=True, lock=False)

    def verify(self, name: str) -> None:
        path = self._path(name)
        if not path.exists():
            return

        try:
            env = self._open_read_only(path)
        except lmdb.Error as exc:
            raise CorruptFileError(name, str(exc)) from exc

        try:
            expected = env.stat()["entries"]
            count = 0
            previous: bytes | None = None
            with env.begin() as txn:
                for key, _value in txn.cursor():
                    if previous is not None and key <= previous:
                        raise CorruptFileError(name, "keys out of order")
                    previous = key
                    count += 1
            if count != expected:
                raise CorruptFileError(name, f"expected {expected} records, found {count}")
        except lmdb.Error as exc:
            raise CorruptFileError(name, str(exc)) from exc
        finally:
            env.close()

    def salvage(self, name: str, aggressive: bool = False) -> list[KeyValPair]:
        path = self._path(name)
        if not path.exists():
            raise SalvageUnavailableError(f"{name}: no such database file")

        try:
            env = self._open_read_only(path)
        except lmdb.Error as exc:
            raise SalvageUnavailableError(f"{name}: unreadable: {exc}") from exc

        records: list[KeyValPair] = []
        try:
            error = _walk(env, None, records)
            # A failed read poisons its transaction, so each retry runs in a fresh one.
            while error is not None and aggressive and records:
                last = records[-1][0]
                logger.warning("salvage_read_error", file=name, after=last.hex(), error=str(error))
                for start in _keys_after(last):
                    count = len(records)
                    error = _walk(env, start, records)
                    if error is None or len(records) > count:
                        break
                else:
                    break
            if error is not None and aggressive:
                tail = _walk_back(env, records[-1][0] if records else None)
                if tail:
                    logger.warning("salvage_tail_recovered", file=name, records=len(tail))
                    records.extend(tail)
        finally:
            env.close()

        if error is not None:
            if not records:
                raise SalvageUnavailableError(f"{name}: unreadable: {error}") from error
            logger.warning("salvage_incomplete", file=name, records=len(records), error=str(error))
        return records

    def rename(self, src: str, dst: str) -> None:
        src_path, dst_path = self._path(src), self._path(dst)
        os.replace(src_path, dst_path)
        self._lock_path(src).unlink(missing_ok=True)
        self._lock_path(dst).unlink(missing_ok=True)

    def remove(self, name: str) -> None:
        self._path(name).unlink(missing_ok=True)
        self._lock_path(name).unlink(missing_ok=True)

    def remove_recovery_artifacts(self) -> None:
        with self._lock:
            open_names = set(self._open_names)
        for lock_file in self._directory.glob(f"*{LOCK_SUFFIX}"):
            if lock_file.name[: -len(LOCK_SUFFIX)] not in open_names:
                lock_file.unlink(missing_ok=True)

    def close(self) -> None:
        if self._ephemeral:
            shutil.rmtree(self._directory, ignore_errors=True)


def _walk(env: lmdb.Environment, start: bytes | None, records: list[KeyValPair]) -> lmdb.Error | None:
    """Append records from ``start`` (or the first key) in a new read transaction.

    Stops at the end of the file or at the first read error, which is
    returned. Keys must keep increasing; anything else counts as damage.
    """
    try:
        with env.begin() as txn:
            cursor = txn.cursor()
            positioned = cursor.first() if start is None else cursor.set_range(start)
            while positioned:
                key = cursor.key()
                if records and key <= records[-1][0]:
                    raise lmdb.CorruptedError("keys out of order")
                records.append((key, cursor.value()))
                positioned = cursor.next()
    except lmdb.Error as exc:
        return exc
    return None


def _walk_back(env: lmdb.Environment, floor: bytes | None) -> list[KeyValPair]:
    """Collect records from the last key backwards, stopping at ``floor`` or damage."""
    tail: list[KeyValPair] = []
    try:
        with env.begin() as txn:
            cursor = txn.cursor()
            positioned = cursor.last()
            while positioned:
                key = cursor.key()
                if (floor is not None and key <= floor) or (tail and key >= tail[-1][0]):
                    break
                tail.append((key, cursor.value()))
                positioned = cursor.prev()
    except lmdb.Error as exc:
        logger.debug("salvage_backward_walk_stopped", records=len(tail), error=str(exc))
    tail.reverse()
    return tail


def _keys_after(key: bytes) -> Iterator[bytes]:
    """Seek targets past ``key``, each skipping a wider key range than the last."""
    yield key + b"\x00"
    for i in range(len(key) - 1, -1, -1):
        if key[i] < 0xFF:
            yield key[:i] + bytes([key[i] + 1])
