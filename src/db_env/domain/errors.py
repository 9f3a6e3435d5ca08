"""Error taxonomy for the storage environment.

Engine-level errors are converted to boolean results at the database
handle boundary. Only verify and recovery distinguish failure modes.
"""

from __future__ import annotations


class DBEnvironmentError(Exception):
    """The environment could not be initialized.

    Every later operation fails until the environment opens successfully.
    """


class HandleUnavailableError(Exception):
    """A database file could not be opened for use."""

    def __init__(self, file: str, reason: str) -> None:
        super().__init__(f"{file}: {reason}")
        self.file = file
        self.reason = reason


class HandleInUseError(HandleUnavailableError):
    """The file is still referenced by open database handles."""

    def __init__(self, file: str, use_count: int) -> None:
        super().__init__(file, f"still referenced by {use_count} handle(s)")
        self.use_count = use_count


class TransactionStateError(Exception):
    """A transaction could not be started or finished in the current state."""


class ReadOnlyViolationError(RuntimeError):
    """A write or erase was issued on a read-only handle.

    This is a programming error and is never converted to a boolean.
    """


class EngineError(Exception):
    """The storage engine rejected an operation."""


class CorruptFileError(EngineError):
    """A database file failed structural verification."""

    def __init__(self, file: str, detail: str) -> None:
        super().__init__(f"{file} is corrupt: {detail}")
        self.file = file
        self.detail = detail


class SalvageUnavailableError(EngineError):
    """No records could be extracted from a damaged file."""
