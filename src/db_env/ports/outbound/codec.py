"""Codec port for versioned value serialization.

Every key and value stored through a database handle passes through a
codec. The codec is told the client version so that types can change
their wire form across releases.
"""

from __future__ import annotations

from abc import abstractmethod
from typing import Any, Protocol, TypeVar, runtime_checkable

T = TypeVar("T")


class DecodeError(Exception):
    """Bytes do not decode into the requested value."""


@runtime_checkable
class Serializable(Protocol):
    """Protocol for application types that control their own wire form."""

    def to_wire(self, version: int) -> Any:
        """Return a codec-native representation of this value."""
        ...

    @classmethod
    def from_wire(cls, obj: Any, version: int) -> Any:
        """Rebuild a value from its codec-native representation."""
        ...


class Codec(Protocol):
    """Protocol for encoding typed values to bytes and back."""

    @property
    @abstractmethod
    def version(self) -> int:
        """Version tag used for every encode and decode."""
        ...

    @abstractmethod
    def encode(self, value: Any) -> bytes:
        """Encode a value.

        Raises:
            TypeError: If the value has no wire form.
        """
        ...

    @abstractmethod
    def decode(self, data: bytes, value_type: type[T] | None = None) -> T | Any:
        """Decode bytes, optionally into a specific type.

        Raises:
            DecodeError: If the bytes are malformed or do not match value_type.
        """
        ...
