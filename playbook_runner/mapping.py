"""Output transforms applied to call results.

A mapping module (``mapping.py`` in the working directory by default)
defines two dicts::

    types = {"uint8": int}
    mapping = {
        "getBalanceInEth": {"key": "balanceInEth", "transform": str},
        "when": {"key": "when", "transform": lambda v: datetime.fromtimestamp(v)},
    }

Lookup goes from most to least specific: method name, exact ABI type
(``uint64``), then the type alias with sizes removed (``uint``).
"""
from __future__ import annotations

import re
from typing import Any, Callable, Dict, Mapping, Optional

Transform = Callable[[Any], Any]

_TYPE_SIZE = re.compile(r"\d+")


def type_alias(abi_type: str) -> str:
    return _TYPE_SIZE.sub("", abi_type)


def _transform_of(rule: Any) -> Optional[Transform]:
    if rule is None:
        return None
    if callable(rule):
        return rule
    if isinstance(rule, (list, tuple)):
        return _transform_of(rule[0]) if rule else None
    if isinstance(rule, Mapping):
        transform = rule.get("transform")
        return transform if callable(transform) else None
    return None


class OutputMapper:
    def __init__(
        self,
        mapping: Optional[Mapping[str, Any]] = None,
        types: Optional[Mapping[str, Any]] = None,
    ) -> None:
        self.mapping: Dict[str, Any] = dict(mapping or {})
        self.types: Dict[str, Any] = dict(types or {})

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> "OutputMapper":
        data = data or {}
        return cls(mapping=data.get("mapping"), types=data.get("types"))

    def find_rule(self, method: Optional[str], output_type: Optional[str]) -> Any:
        if method and method in self.mapping:
            return self.mapping[method]
        if output_type:
            if output_type in self.types:
                return self.types[output_type]
            alias = type_alias(output_type)
            if alias in self.types:
                return self.types[alias]
        return None

    def find_transform(self, method: Optional[str], output_type: Optional[str]) -> Optional[Transform]:
        return _transform_of(self.find_rule(method, output_type))

    def apply(self, method: Optional[str], output_type: Optional[str], value: Any) -> Any:
        transform = self.find_transform(method, output_type)
        return transform(value) if transform else value

    def key_for(self, method: str) -> str:
        rule = self.mapping.get(method)
        if isinstance(rule, (list, tuple)) and rule:
            rule = rule[0]
        if isinstance(rule, Mapping) and rule.get("key"):
            return str(rule["key"])
        return method


__all__ = ["OutputMapper", "type_alias"]
