"""Value objects for the storage environment."""

from db_env.domain.value_objects.handle_types import (
    CLIENT_VERSION,
    VERSION_KEY,
    CursorStatus,
    Durability,
    KeyValPair,
    OpenMode,
    SeekMode,
    VerifyResult,
)

__all__ = [
    "CLIENT_VERSION",
    "VERSION_KEY",
    "CursorStatus",
    "Durability",
    "KeyValPair",
    "OpenMode",
    "SeekMode",
    "VerifyResult",
]
