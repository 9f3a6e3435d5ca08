"""Types shared by the environment, database handles and engine adapters."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, IntEnum, auto
from typing import Tuple


CLIENT_VERSION = 80000
"""Version tag handed to the codec for every encode and decode."""

VERSION_KEY = "version"
"""Well-known key holding a file's schema version."""

KeyValPair = Tuple[bytes, bytes]


class VerifyResult(Enum):
    """Outcome of validating a file before its first open in a session."""

    OK = auto()
    RECOVERED = auto()
    RECOVERY_FAILED = auto()


class Durability(Enum):
    """Durability of a transaction commit.

    SYNC flushes to stable storage on commit. WRITE_NOSYNC hands the
    pages to the OS without forcing them to disk. NOSYNC leaves flushing
    entirely to the next checkpoint.
    """

    SYNC = "sync"
    WRITE_NOSYNC = "write_nosync"
    NOSYNC = "nosync"


class SeekMode(Enum):
    """How a cursor read positions the cursor.

    Required inputs per mode:
        NEXT: none; advances (or starts at the first record).
        SET: key buffer holds the exact key to position on.
        SET_RANGE: key buffer holds a key; positions on the first key >= it.
        GET_BOTH: key and value buffers must both match exactly.
        GET_BOTH_RANGE: key must match; stored value must be >= value buffer.
    """

    NEXT = auto()
    SET = auto()
    SET_RANGE = auto()
    GET_BOTH = auto()
    GET_BOTH_RANGE = auto()

    @property
    def needs_key(self) -> bool:
        return self is not SeekMode.NEXT

    @property
    def needs_value(self) -> bool:
        return self in (SeekMode.GET_BOTH, SeekMode.GET_BOTH_RANGE)


class CursorStatus(IntEnum):
    """Result codes of a cursor read."""

    OK = 0
    ERROR = -1
    """Engine failed for a reason other than a missing record."""

    NOT_FOUND = -30798
    MALFORMED = 99999
    """Engine reported success but handed back no payload."""


@dataclass(frozen=True)
class OpenMode:
    """Parsed handle mode string.

    Mode strings follow fopen conventions: ``r`` opens read-only, ``+`` or
    ``w`` make the handle writable, and ``c`` creates the file if absent.
    """

    read_only: bool
    create: bool

    @classmethod
    def parse(cls, mode: str) -> OpenMode:
        if not mode or set(mode) - set("rwc+"):
            raise ValueError(f"Invalid open mode: {mode!r}")
        return cls(
            read_only="+" not in mode and "w" not in mode,
            create="c" in mode,
        )
