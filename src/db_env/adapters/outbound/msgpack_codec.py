"""msgpack implementation of the Codec port.

Supported values:
    - msgpack-native types (None, bool, int, float, str, bytes, list, dict)
    - tuples (encoded as arrays, rebuilt when ``tuple`` is requested)
    - pydantic models (dumped in JSON mode, validated on decode)
    - any type implementing the Serializable protocol
"""

from __future__ import annotations

from typing import Any

import msgpack
from pydantic import BaseModel, ValidationError

from db_env.domain.value_objects import CLIENT_VERSION
from db_env.ports.outbound.codec import DecodeError, Serializable


class MsgpackCodec:
    """Versioned msgpack codec."""

    def __init__(self, version: int = CLIENT_VERSION) -> None:
        self._version = version

    @property
    def version(self) -> int:
        return self._version

    def encode(self, value: Any) -> bytes:
        return msgpack.packb(value, default=self._to_native, use_bin_type=True)

    def decode(self, data: bytes, value_type: type | None = None) -> Any:
        try:
            obj = msgpack.unpackb(data, raw=False, strict_map_key=False)
        except (ValueError, msgpack.UnpackException) as exc:
            raise DecodeError(f"malformed msgpack payload: {exc}") from exc

        if value_type is None:
            return obj
        return self._from_native(obj, value_type)

    def _to_native(self, value: Any) -> Any:
        if isinstance(value, Serializable):
            return value.to_wire(self._version)
        if isinstance(value, BaseModel):
            return value.model_dump(mode="json")
        raise TypeError(f"Cannot encode value of type {type(value).__name__}")

    def _from_native(self, obj: Any, value_type: type) -> Any:
        if issubclass(value_type, BaseModel):
            try:
                return value_type.model_validate(obj)
            except ValidationError as exc:
                raise DecodeError(f"invalid {value_type.__name__}: {exc}") from exc

        if hasattr(value_type, "from_wire"):
            try:
                return value_type.from_wire(obj, self._version)
            except (KeyError, TypeError, ValueError) as exc:
                raise DecodeError(f"invalid {value_type.__name__}: {exc}") from exc

        if value_type is tuple and isinstance(obj, list):
            return tuple(obj)
        if value_type is float and isinstance(obj, int) and not isinstance(obj, bool):
            return float(obj)
        if not isinstance(obj, value_type):
            raise DecodeError(
                f"expected {value_type.__name__}, got {type(obj).__name__}"
            )
        return obj
