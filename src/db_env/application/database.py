"""Database Handle - scoped, typed access to one named file.

A Database registers with the Environment on construction (opening the
engine file on first reference) and releases the registration on close.
A handle collected without being closed releases it when finalized.
Keys and values go through the environment's codec; engine failures are
reported as False (or the caller's default for reads).

Usage:
    with Database(env, "wallet.dat", "cr+") as db:
        with db.transaction():
            db.write(("name", 1), "alice")
            db.erase(("name", 0))

        for key, value in db.records():
            ...

Transactions:
    At most one transaction is active per handle. Operations issued
    without one run as implicit single-operation transactions. A handle
    and its transaction belong to the thread that created them.
"""

from __future__ import annotations

import time
import weakref
from contextlib import closing, contextmanager
from typing import Any, Iterator

from db_env.application.environment import Environment
from db_env.domain.errors import (
    EngineError,
    HandleInUseError,
    HandleUnavailableError,
    ReadOnlyViolationError,
    TransactionStateError,
)
from db_env.domain.value_objects import (
    VERSION_KEY,
    CursorStatus,
    KeyValPair,
    OpenMode,
    SeekMode,
)
from db_env.infrastructure.logging import get_logger
from db_env.infrastructure.tracing import trace_span
from db_env.ports.outbound.codec import Codec, DecodeError
from db_env.ports.outbound.storage_engine import EngineCursor, EngineHandle, EngineTransaction

logger = get_logger(__name__)

REWRITE_SUFFIX = ".rewrite"


class Database:
    """Handle on one database file inside an Environment.

    Attributes:
        file: Name of the file inside the environment.
        read_only: Whether writes and erases are rejected.
    """

    def __init__(
        self,
        env: Environment,
        file: str,
        mode: str = "r+",
        codec: Codec | None = None,
    ) -> None:
        """Open a handle.

        Args:
            env: The environment hosting the file (opened lazily).
            file: File name inside the environment.
            mode: ``r`` read-only, ``r+``/``w`` read/write, plus ``c`` to
                create the file if absent.
            codec: Codec for keys and values (default: the environment's).

        Raises:
            ValueError: If the mode string is invalid.
            DBEnvironmentError: If the environment cannot be opened.
            HandleUnavailableError: If the file cannot be opened.
        """
        parsed = OpenMode.parse(mode)
        self._env = env
        self._file = file
        self._read_only = parsed.read_only
        self._codec = codec or env.codec
        self._active_txn: EngineTransaction | None = None
        self._handle: EngineHandle | None = env.acquire(file, create=parsed.create)
        # Handles dropped without close() still give back their registration.
        self._finalizer = weakref.finalize(self, _release_abandoned, env, file)
        self._finalizer.atexit = False

    @property
    def file(self) -> str:
        return self._file

    @property
    def read_only(self) -> bool:
        return self._read_only

    @property
    def is_open(self) -> bool:
        return self._handle is not None

    @property
    def in_transaction(self) -> bool:
        return self._active_txn is not None

    def close(self) -> None:
        """Abort any active transaction and release the file. Idempotent."""
        if self._handle is None:
            return
        if self._active_txn is not None:
            self.txn_abort()
        self._finalizer.detach()
        self._handle = None
        self._env.release(self._file)

    def __enter__(self) -> Database:
        return self

    def __exit__(self, exc_type: Any, exc: Any, tb: Any) -> None:
        self.close()

    def __repr__(self) -> str:
        state = "open" if self._handle is not None else "closed"
        return f"Database({self._file!r}, {state}, read_only={self._read_only})"

    # Transactions

    def txn_begin(self) -> bool:
        """Begin a transaction. Fails if one is already active."""
        if self._handle is None or self._active_txn is not None:
            return False
        txn = self._env.txn_begin(self._handle, write=not self._read_only)
        if txn is None:
            return False
        self._active_txn = txn
        return True

    def txn_commit(self) -> bool:
        return self._finish_txn(commit=True)

    def txn_abort(self) -> bool:
        return self._finish_txn(commit=False)

    def _finish_txn(self, commit: bool) -> bool:
        if self._handle is None or self._active_txn is None:
            return False
        txn, self._active_txn = self._active_txn, None
        status = "commit" if commit else "abort"
        try:
            if commit:
                txn.commit()
            else:
                txn.abort()
        except EngineError as exc:
            logger.warning("txn_finish_failed", file=self._file, op=status, error=str(exc))
            return False
        self._env.metrics.transactions_total.labels(status=status).inc()
        return True

    @contextmanager
    def transaction(self) -> Iterator[Database]:
        """Run a block in a transaction, committing on success.

        Raises:
            TransactionStateError: If the transaction cannot begin or commit.
        """
        if not self.txn_begin():
            raise TransactionStateError(f"{self._file}: cannot begin transaction")
        try:
            yield self
        except BaseException:
            self.txn_abort()
            raise
        if not self.txn_commit():
            raise TransactionStateError(f"{self._file}: commit failed")

    # Records

    def _check_writable(self, op: str) -> None:
        if self._read_only:
            raise ReadOnlyViolationError(f"{op} called on read-only database {self._file!r}")

    def _record(self, op: str, ok: bool) -> bool:
        self._env.metrics.record_ops_total.labels(op=op, status="ok" if ok else "fail").inc()
        return ok

    def read(self, key: Any, value_type: type | None = None, default: Any = None) -> Any:
        """Read and decode the value stored under ``key``.

        Returns ``default`` when the key is absent, the handle is closed or
        the stored bytes do not decode into ``value_type``. Absent and
        malformed records are not told apart.
        """
        if self._handle is None:
            return default
        try:
            data = self._handle.get(self._active_txn, self._codec.encode(key))
        except EngineError as exc:
            logger.debug("read_failed", file=self._file, error=str(exc))
            data = None
        if data is None:
            self._record("read", False)
            return default

        try:
            value = self._codec.decode(data, value_type)
        except DecodeError as exc:
            logger.debug("read_decode_failed", file=self._file, error=str(exc))
            self._record("read", False)
            return default
        self._record("read", True)
        return value

    def write(self, key: Any, value: Any, overwrite: bool = True) -> bool:
        """Encode and store a record.

        Returns False if ``overwrite`` is off and the key already exists.

        Raises:
            ReadOnlyViolationError: On a read-only handle.
        """
        if self._handle is None:
            return False
        self._check_writable("write")
        return self._put(self._codec.encode(key), self._codec.encode(value), overwrite)

    def write_raw(self, key: bytes, value: bytes, overwrite: bool = True) -> bool:
        """Store already encoded bytes, bypassing the codec."""
        if self._handle is None:
            return False
        self._check_writable("write")
        return self._put(key, value, overwrite)

    def _put(self, key: bytes, value: bytes, overwrite: bool) -> bool:
        try:
            ok = self._handle.put(self._active_txn, key, value, overwrite=overwrite)
        except EngineError as exc:
            logger.debug("write_failed", file=self._file, error=str(exc))
            ok = False
        if ok:
            self._env.note_update()
        return self._record("write", ok)

    def erase(self, key: Any) -> bool:
        """Delete a record. Erasing an absent key succeeds.

        Raises:
            ReadOnlyViolationError: On a read-only handle.
        """
        if self._handle is None:
            return False
        self._check_writable("erase")
        try:
            self._handle.delete(self._active_txn, self._codec.encode(key))
        except EngineError as exc:
            logger.debug("erase_failed", file=self._file, error=str(exc))
            return self._record("erase", False)
        self._env.note_update()
        return self._record("erase", True)

    def exists(self, key: Any) -> bool:
        if self._handle is None:
            return False
        try:
            found = self._handle.exists(self._active_txn, self._codec.encode(key))
        except EngineError as exc:
            logger.debug("exists_failed", file=self._file, error=str(exc))
            found = False
        return self._record("exists", found)

    # Cursors

    def get_cursor(self) -> EngineCursor | None:
        """Open a cursor bound to the active transaction, if any."""
        if self._handle is None:
            return None
        try:
            return self._handle.cursor(self._active_txn)
        except EngineError as exc:
            logger.debug("cursor_failed", file=self._file, error=str(exc))
            return None

    def read_at_cursor(
        self,
        cursor: EngineCursor,
        key: bytearray,
        value: bytearray,
        mode: SeekMode = SeekMode.NEXT,
    ) -> CursorStatus:
        """Move ``cursor`` per ``mode`` and copy the record into the buffers.

        ``key`` must hold the search key for every mode but NEXT; ``value``
        must hold the search value for GET_BOTH and GET_BOTH_RANGE. Both
        buffers are replaced only on success.
        """
        search_key = bytes(key) if mode.needs_key else None
        search_value = bytes(value) if mode.needs_value else None
        try:
            record = cursor.get(mode, search_key, search_value)
        except EngineError as exc:
            logger.debug("cursor_read_failed", file=self._file, error=str(exc))
            return CursorStatus.ERROR

        if record is None:
            return CursorStatus.NOT_FOUND
        found_key, found_value = record
        if found_key is None or found_value is None:
            return CursorStatus.MALFORMED

        key[:] = found_key
        value[:] = found_value
        return CursorStatus.OK

    def records(self) -> Iterator[KeyValPair]:
        """Iterate every (key, value) pair as raw bytes, in engine order.

        Raises:
            EngineError: If the cursor fails mid-iteration.
        """
        if self._handle is None:
            return
        cursor = self.get_cursor()
        if cursor is None:
            raise EngineError(f"{self._file}: cannot open cursor")
        try:
            key, value = bytearray(), bytearray()
            while True:
                status = self.read_at_cursor(cursor, key, value)
                if status == CursorStatus.NOT_FOUND:
                    return
                if status != CursorStatus.OK:
                    raise EngineError(f"{self._file}: cursor read failed ({status.name})")
                yield bytes(key), bytes(value)
        finally:
            cursor.close()

    # Schema version

    def read_version(self) -> int | None:
        """Return the stored schema version, or None if there is none."""
        return self.read(VERSION_KEY, int)

    def write_version(self, version: int) -> bool:
        return self.write(VERSION_KEY, version)

    # Maintenance

    @classmethod
    def rewrite(
        cls,
        env: Environment,
        file: str,
        skip_prefix: bytes | str | None = None,
    ) -> bool:
        """Copy ``file`` into a fresh file and swap it in.

        Records are skipped when ``skip_prefix`` matches: a bytes prefix is
        compared with the encoded key, a str prefix with the decoded key
        (or its first element for composite keys). The original is left
        untouched unless every step succeeds; the swap is the last step.

        Returns:
            False if the file is in use or any step fails.
        """
        tmp = f"{file}{REWRITE_SUFFIX}"
        started = time.perf_counter()

        with trace_span("db_env.rewrite", {"file": file}):
            try:
                env.close_db(file)
                env.remove_db(tmp)
            except HandleInUseError as exc:
                logger.warning("rewrite_deferred", file=file, error=str(exc))
                return False

            copied = skipped = 0
            try:
                with cls(env, file, "r") as source, cls(env, tmp, "cw") as target:
                    if not (source.txn_begin() and target.txn_begin()):
                        raise TransactionStateError(f"{file}: cannot begin rewrite transactions")
                    with closing(source.records()) as records:
                        for key, value in records:
                            if _skip_record(source._codec, key, skip_prefix):
                                skipped += 1
                                continue
                            if not target.write_raw(key, value):
                                raise EngineError(f"{tmp}: write failed")
                            copied += 1
                    source.txn_abort()
                    if not target.txn_commit():
                        raise EngineError(f"{tmp}: commit failed")
                env.rename_db(tmp, file)
            except (EngineError, HandleUnavailableError, TransactionStateError, OSError) as exc:
                logger.error("rewrite_failed", file=file, error=str(exc))
                env.remove_db(tmp)
                return False

        env.metrics.rewrite_duration_seconds.observe(time.perf_counter() - started)
        logger.info("rewrite_completed", file=file, copied=copied, skipped=skipped)
        return True


def _release_abandoned(env: Environment, file: str) -> None:
    logger.warning("database_handle_abandoned", file=file)
    env.release(file)


def _skip_record(codec: Codec, key: bytes, prefix: bytes | str | None) -> bool:
    if prefix is None:
        return False
    if isinstance(prefix, bytes):
        return key.startswith(prefix)
    try:
        decoded = codec.decode(key)
    except DecodeError:
        return False
    if isinstance(decoded, (list, tuple)) and decoded:
        decoded = decoded[0]
    return isinstance(decoded, str) and decoded.startswith(prefix)
