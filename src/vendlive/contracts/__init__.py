"""Fleet topic catalog, payload models and the JSON payload codec."""

from .payloads import decode_payload, encode_payload
from .v1 import *  # noqa: F401,F403
from .v1 import __all__ as _v1_all

__all__ = ["encode_payload", "decode_payload", *_v1_all]
