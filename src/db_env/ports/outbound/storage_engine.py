"""Storage Engine port for the transactional key/value store.

This outbound port defines the contract of the page-organized engine
that hosts every named database file of an environment. The environment
and database handles only ever talk to the engine through it.

The engine is responsible for:
- Opening and closing per-file handles
- Transactions with configurable commit durability
- Record get/put/delete/exists and cursor traversal
- Structural verification and best-effort salvage of damaged files

Errors are reported with the exceptions in ``db_env.domain.errors``:
``EngineError`` for rejected operations, ``CorruptFileError`` from
``verify`` and ``SalvageUnavailableError`` from ``salvage``.
"""

from __future__ import annotations

from abc import abstractmethod
from pathlib import Path
from typing import Protocol

from db_env.domain.value_objects import Durability, KeyValPair, SeekMode


class EngineTransaction(Protocol):
    """An engine transaction bound to one open file."""

    @property
    @abstractmethod
    def writable(self) -> bool:
        """Whether the transaction may modify records."""
        ...

    @abstractmethod
    def commit(self) -> None:
        """Commit and release the transaction."""
        ...

    @abstractmethod
    def abort(self) -> None:
        """Discard changes and release the transaction."""
        ...


class EngineCursor(Protocol):
    """A cursor over the records of one file."""

    @abstractmethod
    def get(
        self, mode: SeekMode, key: bytes | None = None, value: bytes | None = None
    ) -> tuple[bytes | None, bytes | None] | None:
        """Position the cursor and return the record under it.

        Returns:
            The (key, value) pair, or None when no record matches.
        """
        ...

    @abstractmethod
    def close(self) -> None:
        """Release the cursor and any transaction it owns."""
        ...


class EngineHandle(Protocol):
    """An open named database file.

    Every record operation takes an optional transaction; without one the
    operation runs as an implicit single-operation transaction.

    Thread Safety:
        Concurrent transactions from different threads are isolated by
        the engine. A single transaction must stay on one thread.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """File name inside the environment."""
        ...

    @abstractmethod
    def begin(
        self, write: bool = True, durability: Durability = Durability.WRITE_NOSYNC
    ) -> EngineTransaction:
        """Begin a transaction on this file."""
        ...

    @abstractmethod
    def get(self, txn: EngineTransaction | None, key: bytes) -> bytes | None:
        """Fetch a value, or None if the key is absent."""
        ...

    @abstractmethod
    def put(
        self, txn: EngineTransaction | None, key: bytes, value: bytes, overwrite: bool = True
    ) -> bool:
        """Store a record. Returns False if overwrite is off and the key exists."""
        ...

    @abstractmethod
    def delete(self, txn: EngineTransaction | None, key: bytes) -> bool:
        """Delete a record. Returns False if the key was absent."""
        ...

    @abstractmethod
    def exists(self, txn: EngineTransaction | None, key: bytes) -> bool:
        """Check for a key without fetching its value."""
        ...

    @abstractmethod
    def cursor(self, txn: EngineTransaction | None) -> EngineCursor:
        """Open a cursor, owning a private read transaction if txn is None."""
        ...

    @abstractmethod
    def checkpoint(self) -> None:
        """Force everything committed so far to stable storage."""
        ...

    @abstractmethod
    def close(self) -> None:
        """Close the file. The handle must not be used afterwards."""
        ...


class StorageEngine(Protocol):
    """The engine environment hosting all files of one directory."""

    @property
    @abstractmethod
    def directory(self) -> Path:
        """Directory holding the data files."""
        ...

    @abstractmethod
    def open(self, name: str, create: bool = False) -> EngineHandle:
        """Open a named file.

        Raises:
            EngineError: If the file is missing (and create is False) or
                cannot be opened.
        """
        ...

    @abstractmethod
    def exists(self, name: str) -> bool:
        """Whether a data file with this name exists."""
        ...

    @abstractmethod
    def verify(self, name: str) -> None:
        """Run a structural check over a closed file.

        Raises:
            CorruptFileError: If the check fails.
        """
        ...

    @abstractmethod
    def salvage(self, name: str, aggressive: bool = False) -> list[KeyValPair]:
        """Extract every readable record from a closed, possibly damaged file.

        The whole result is held in memory.

        Raises:
            SalvageUnavailableError: If the file cannot be read at all.
        """
        ...

    @abstractmethod
    def rename(self, src: str, dst: str) -> None:
        """Atomically replace dst with src. Both files must be closed."""
        ...

    @abstractmethod
    def remove(self, name: str) -> None:
        """Delete a closed file from disk."""
        ...

    @abstractmethod
    def remove_recovery_artifacts(self) -> None:
        """Delete files only needed for crash recovery of closed files."""
        ...

    @abstractmethod
    def close(self) -> None:
        """Tear down the environment."""
        ...
