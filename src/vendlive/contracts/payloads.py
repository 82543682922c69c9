from __future__ import annotations

from typing import Any, Optional, Type, TypeVar, overload

import orjson
from pydantic import BaseModel

M = TypeVar("M", bound=BaseModel)


def encode_payload(value: Any) -> bytes:
    """Serialize an outbound payload to bytes.

    ``bytes`` pass through, strings are UTF-8 encoded, pydantic models and any
    other JSON-compatible value are dumped with orjson.

    Raises:
        TypeError: If the value is not JSON serializable.
    """
    if isinstance(value, bytes):
        return value
    if isinstance(value, (bytearray, memoryview)):
        return bytes(value)
    if isinstance(value, str):
        return value.encode("utf-8")
    if isinstance(value, BaseModel):
        return orjson.dumps(value.model_dump(mode="json"))
    return orjson.dumps(value)


@overload
def decode_payload(payload: bytes | str, model: None = None) -> Any: ...


@overload
def decode_payload(payload: bytes | str, model: Type[M]) -> M: ...


def decode_payload(payload: bytes | str, model: Optional[Type[M]] = None) -> Any:
    """Parse an inbound JSON payload, optionally validating it into ``model``.

    Raises:
        ValueError: On malformed JSON or (with ``model``) a validation failure.
    """
    if model is not None:
        return model.model_validate_json(payload)
    return orjson.loads(payload)


__all__ = ["encode_payload", "decode_payload"]
