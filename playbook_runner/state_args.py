"""Merge ``--inputs``/``--state`` command line values into one mapping.

Each value is either a path to a YAML/JSON/Python file or a
``dotted.key=value`` assignment. Files may nest their values under the
property name itself (``$inputs: {...}``); such a block is hoisted to the
top level.
"""
from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple, Union

from .errors import ConfigurationError
from .script_reader import ScriptReader
from .state import deep_merge, set_key_value


def parse_assignment(assignment: str) -> Tuple[str, Any]:
    key, _, value = assignment.partition("=")
    key = key.strip()
    value = value.strip()
    if not key:
        raise ConfigurationError(f"Invalid assignment {assignment!r}; usage: key=value")
    if (value.startswith('"') and value.endswith('"')) or (
        value.startswith("'") and value.endswith("'")
    ):
        return key, value[1:-1]
    try:
        # numbers, booleans, null, lists and objects; anything else stays a string
        return key, json.loads(value)
    except ValueError:
        return key, value


def _is_assignment(item: str, reader: ScriptReader) -> bool:
    if "=" not in item:
        return False
    return not ScriptReader.coerce_relative_path(item, reader.working_directory).exists()


def _hoist(values: Mapping[str, Any], prop_name: str) -> Dict[str, Any]:
    values = dict(values)
    nested = values.pop(prop_name, None)
    if isinstance(nested, Mapping):
        values = deep_merge(values, nested)
    return values


def format_state_args(
    reader: ScriptReader,
    values: Optional[Union[str, Mapping[str, Any], Iterable[Any]]],
    prop_name: str,
) -> Dict[str, Any]:
    if values is None:
        return {}
    if isinstance(values, (str, Path, Mapping)):
        values = [values]

    result: Dict[str, Any] = {}
    for index, item in enumerate(values):
        if isinstance(item, Path):
            item = str(item)
        if isinstance(item, str):
            if _is_assignment(item, reader):
                key, value = parse_assignment(item)
                assigned: Dict[str, Any] = {}
                set_key_value(assigned, key, value)
                result = deep_merge(result, _hoist(assigned, prop_name))
            else:
                result = deep_merge(result, _hoist(reader.merge(item), prop_name))
            continue
        if isinstance(item, Mapping):
            result = deep_merge(result, _hoist(item, prop_name))
            continue
        raise ConfigurationError(
            f"Input {index} had unexpected type ({type(item).__name__}); "
            "usage --inputs foo=bar and/or --inputs path-to-file"
        )
    return result


__all__ = ["format_state_args", "parse_assignment"]
