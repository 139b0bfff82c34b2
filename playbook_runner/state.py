"""State model threaded through every step of a run.

The state is a plain ``dict`` with four reserved keys (``$inputs``,
``$outputs``, ``$deployed`` and ``$contracts``) plus the progress counters
``commandIndex``/``commandCount``. Nested loops, sequences and playbook
references all receive the *same* dict, so a write made by one step is
visible to every step that runs after it.
"""
from __future__ import annotations

import copy
import re
from typing import Any, Dict, Iterable, List, Mapping, Optional

from .constants import (
    COMMAND_COUNT_KEY,
    COMMAND_INDEX_KEY,
    CONTRACTS_KEY,
    DEPLOYED_KEY,
    INPUTS_KEY,
    OUTPUTS_KEY,
    RESERVED_KEYS,
)
from .errors import ConfigurationError, StateReferenceError

_PATH_TOKEN = re.compile(r"[^.\[\]]+")
_MISSING = object()


def deep_merge(base: Mapping[str, Any], overlay: Mapping[str, Any]) -> Dict[str, Any]:
    """
    Deep merge overlay into base. Overlay values win.
    Dicts are merged recursively. Lists and scalars are replaced.
    """
    result = copy.deepcopy(dict(base))
    for key, value in overlay.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, Mapping):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = copy.deepcopy(value)
    return result


def split_path(path: str) -> List[str]:
    """``"$deployed.Token[0].address"`` -> ``["$deployed", "Token", "0", "address"]``."""
    return _PATH_TOKEN.findall(path)


def _step_into(current: Any, key: str) -> Any:
    if isinstance(current, Mapping):
        return current.get(key, _MISSING)
    if isinstance(current, (list, tuple)) and key.lstrip("-").isdigit():
        index = int(key)
        if -len(current) <= index < len(current):
            return current[index]
        return _MISSING
    return _MISSING


def has_key_value(data: Any, path: str) -> bool:
    current = data
    for key in split_path(path):
        current = _step_into(current, key)
        if current is _MISSING:
            return False
    return True


def get_key_value(data: Any, path: str, default: Any = _MISSING) -> Any:
    """Return the value at ``path``.

    Raises ``StateReferenceError`` when the path does not exist and no
    ``default`` is given. A stored ``None`` is a valid value.
    """
    tokens = split_path(path)
    if not tokens:
        raise StateReferenceError(path, f"Empty state reference: {path!r}")
    current = data
    for key in tokens:
        current = _step_into(current, key)
        if current is _MISSING:
            if default is not _MISSING:
                return default
            raise StateReferenceError(path)
    return current


def set_key_value(data: Dict[str, Any], path: str, value: Any) -> None:
    """Write ``value`` at ``path``, creating intermediate dicts as needed."""
    tokens = split_path(path)
    if not tokens:
        raise ConfigurationError(f"Cannot write to an empty path: {path!r}")
    current: Any = data
    for key in tokens[:-1]:
        if isinstance(current, list) and key.isdigit():
            current = current[int(key)]
            continue
        nxt = current.get(key)
        if not isinstance(nxt, (dict, list)):
            nxt = {}
            current[key] = nxt
        current = nxt
    last = tokens[-1]
    if isinstance(current, list) and last.isdigit():
        current[int(last)] = value
    else:
        current[last] = value


def init_state(state: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Make sure every reserved key is present. Mutates and returns ``state``."""
    if state is None:
        state = {}
    for key in RESERVED_KEYS:
        if state.get(key) is None:
            state[key] = {}
    state.setdefault(COMMAND_INDEX_KEY, 1)
    state.setdefault(COMMAND_COUNT_KEY, 0)
    return state


def normalize_initial_state(state: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    """Turn a caller supplied seed into the canonical state shape.

    When ``$inputs`` is absent, every non-reserved top-level key becomes an
    input, so ``{"amount": 5}`` is read as ``{"$inputs": {"amount": 5}}``.
    ``$deployed`` is never inferred from plain keys.

    A ``dict`` seed is normalized in place so the caller keeps a handle on
    the live state of the run.
    """
    if state is None:
        return init_state({})
    if not isinstance(state, Mapping):
        raise ConfigurationError(
            f"Initial state must be a mapping, got {type(state).__name__}"
        )

    for key in (INPUTS_KEY, DEPLOYED_KEY, OUTPUTS_KEY):
        value = state.get(key)
        if value is not None and not isinstance(value, Mapping):
            raise ConfigurationError(
                f"{key} must be a mapping of names to values, got {type(value).__name__}"
            )

    normalized: Dict[str, Any] = state if isinstance(state, dict) else dict(state)
    if INPUTS_KEY not in normalized:
        loose = {
            k: v
            for k, v in normalized.items()
            if k not in RESERVED_KEYS and k not in (COMMAND_INDEX_KEY, COMMAND_COUNT_KEY)
        }
        for key in loose:
            del normalized[key]
        normalized[INPUTS_KEY] = loose
    return init_state(normalized)


def select_paths(state: Mapping[str, Any], paths: Optional[Iterable[str]]) -> Dict[str, Any]:
    """Build the snapshot written on dump.

    ``paths=None`` selects the entire state except cached contract handles,
    which are not serializable and are rebuilt on the next run.
    """
    if paths is None:
        return {k: v for k, v in state.items() if k != CONTRACTS_KEY}
    output: Dict[str, Any] = {}
    for path in paths:
        value = get_key_value(state, path, None)
        set_key_value(output, path, value)
    return output


__all__ = [
    "deep_merge",
    "split_path",
    "has_key_value",
    "get_key_value",
    "set_key_value",
    "init_state",
    "normalize_initial_state",
    "select_paths",
]
