from __future__ import annotations

import json
from decimal import Decimal
from typing import Any, Mapping

from hexbytes import HexBytes


def to_plain(value: Any) -> Any:
    """Convert web3 return values (AttributeDict, HexBytes, tuples) into
    plain JSON/YAML friendly Python data."""
    if isinstance(value, (HexBytes, bytes, bytearray)):
        return "0x" + bytes(value).hex()
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, Mapping):
        return {str(k): to_plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [to_plain(v) for v in value]
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    if hasattr(value, "to_dict"):
        return to_plain(value.to_dict())
    return repr(value)


def dumps(payload: Any, **kwargs: Any) -> str:
    kwargs.setdefault("indent", 2)
    return json.dumps(payload, default=_json_default, **kwargs)


def _json_default(value: Any) -> Any:
    plain = to_plain(value)
    if plain is value:
        return repr(value)
    return plain


__all__ = ["to_plain", "dumps"]
