"""A single contract invocation step.

A raw step looks like::

    contract: MetaCoin
    run: sendCoin
    at: $deployed.MetaCoin.address
    inputs:
      receiver: $inputs.receiver
      amount: 1000
    outputs: sent

``inputs`` may be positional (a list of values) or named (a mapping, or a
list of mappings which are merged in order). Named inputs are put in ABI
parameter order before the call. Any string that is a whole ``$path``
reference is replaced with the value found at that path in the state.
"""
from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

from .constants import (
    DEPLOYED_KEY,
    OUTPUTS_KEY,
    REFERENCE_PATTERN,
    STATIC_METHODS,
    UTIL_PREFIX,
)
from .errors import ConfigurationError, ResolutionError
from .state import get_key_value, set_key_value

Inputs = Union[List[Any], Dict[str, Any]]


def is_reference(value: Any) -> bool:
    return isinstance(value, str) and bool(REFERENCE_PATTERN.match(value))


def resolve_value(value: Any, state: Mapping[str, Any]) -> Any:
    """Substitute state references inside ``value`` (recursively for lists and dicts)."""
    if isinstance(value, str):
        if _is_escaped(value):
            return value[1:]
        if is_reference(value):
            return get_key_value(state, value)
        return value
    if isinstance(value, Mapping):
        return {key: resolve_value(item, state) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [resolve_value(item, state) for item in value]
    return value


def _is_escaped(value: str) -> bool:
    return value.startswith("\\") and value.lstrip("\\").startswith("$")


def escape_value(value: Any) -> Any:
    """Mark every string that would be read as a reference as a literal."""
    if isinstance(value, str):
        if is_reference(value) or _is_escaped(value):
            return "\\" + value
        return value
    if isinstance(value, Mapping):
        return {key: escape_value(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [escape_value(item) for item in value]
    return value


def _output_path(path: str) -> str:
    return path if path.startswith("$") else f"{OUTPUTS_KEY}.{path}"


class Command:
    FIELDS = ("contract", "run", "at", "inputs", "outputs", "description")

    def __init__(self, step: Union[Mapping[str, Any], "Command"]) -> None:
        if isinstance(step, Command):
            step = step.to_dict()
        if not isinstance(step, Mapping):
            raise ConfigurationError(f"A command must be a mapping, got {type(step).__name__}")

        unknown = sorted(set(step) - set(self.FIELDS))
        if unknown:
            raise ConfigurationError(
                f"Unexpected field(s) {', '.join(unknown)} in command {dict(step)!r}"
            )
        for field in ("contract", "run"):
            value = step.get(field)
            if not isinstance(value, str) or not value.strip():
                raise ConfigurationError(f"Command is missing '{field}': {dict(step)!r}")

        inputs = step.get("inputs")
        if inputs is not None and not isinstance(inputs, (list, tuple, Mapping)):
            # a lone scalar is a single positional argument
            inputs = [inputs]
        outputs = step.get("outputs")
        if outputs is not None and not isinstance(outputs, (str, Mapping)):
            raise ConfigurationError(
                f"'outputs' must be a path or a mapping of paths, got {type(outputs).__name__}"
            )

        self.contract: str = step["contract"].strip()
        self.run: str = step["run"].strip()
        self.at: Optional[str] = step.get("at")
        self.inputs: Optional[Union[Sequence[Any], Mapping[str, Any]]] = inputs
        self.outputs: Optional[Union[str, Mapping[str, str]]] = outputs
        self.description: Optional[str] = step.get("description")
        self.resolved_at: Optional[str] = None

    def __repr__(self) -> str:
        return f"Command({self.summary()})"

    @staticmethod
    def is_command(step: Any) -> bool:
        return isinstance(step, Command) or (
            isinstance(step, Mapping) and "contract" in step and "run" in step
        )

    @staticmethod
    def is_file_playbook(step: Any) -> bool:
        return isinstance(step, Mapping) and "playbook" in step

    @property
    def is_static(self) -> bool:
        """Whether the call targets the contract type rather than a deployed instance."""
        return self.run in STATIC_METHODS

    @property
    def is_util(self) -> bool:
        return self.run.startswith(UTIL_PREFIX)

    @property
    def has_named_inputs(self) -> bool:
        if isinstance(self.inputs, Mapping):
            return True
        return bool(self.inputs) and all(isinstance(item, Mapping) for item in self.inputs)

    def resolve_at(self, state: Mapping[str, Any]) -> str:
        """Resolve the target address, defaulting to ``$deployed.<contract>.address``."""
        at = self.at if self.at is not None else f"{DEPLOYED_KEY}.{self.contract}.address"
        resolved = resolve_value(at, state)
        if isinstance(resolved, Mapping) and "address" in resolved:
            resolved = resolved["address"]
        if not isinstance(resolved, str) or not resolved:
            raise ConfigurationError(f"{self.summary()}: 'at' did not resolve to an address ({resolved!r})")
        self.resolved_at = resolved
        return resolved

    def get_inputs(self, state: Mapping[str, Any]) -> Inputs:
        """Return resolved inputs: a dict for named inputs, otherwise a list."""
        if self.inputs is None:
            return []
        if self.has_named_inputs:
            named: Dict[str, Any] = {}
            groups = [self.inputs] if isinstance(self.inputs, Mapping) else self.inputs
            for group in groups:
                named.update(resolve_value(group, state))
            return named
        return resolve_value(list(self.inputs), state)

    def sort_inputs_using_abi(self, inputs: Inputs, abi: Optional[Mapping[str, Any]]) -> List[Any]:
        """Put named inputs in the parameter order declared by ``abi``.

        Without an ABI entry, named values are passed in the order they were
        written. Positional inputs are always passed through unchanged.
        """
        if not isinstance(inputs, Mapping):
            return list(inputs)
        if not abi:
            return list(inputs.values())

        params = [param.get("name") or "" for param in abi.get("inputs", [])]
        matched: Dict[str, Any] = {}
        for key, value in inputs.items():
            param = _match_parameter(key, params)
            if param is None:
                raise ResolutionError(
                    f"{self.summary()} has no parameter named '{key}' "
                    f"(expected: {', '.join(p or '<unnamed>' for p in params) or 'none'})"
                )
            if param in matched:
                raise ResolutionError(f"{self.summary()}: parameter '{param}' given more than once")
            matched[param] = value

        missing = [param for param in params if param not in matched]
        if missing:
            raise ResolutionError(
                f"{self.summary()} is missing named input(s): {', '.join(p or '<unnamed>' for p in missing)}"
            )
        return [matched[param] for param in params]

    @staticmethod
    def get_output_type_from_abi(abi: Optional[Mapping[str, Any]]) -> Optional[str]:
        outputs = (abi or {}).get("outputs") or []
        if len(outputs) == 1:
            return outputs[0].get("type")
        if outputs:
            return "tuple"
        return None

    def write_outputs(self, result: Any, state: Dict[str, Any]) -> List[str]:
        """Store ``result`` in the state. Returns the simple paths worth dumping."""
        output = result.output
        if self.run == "new":
            set_key_value(
                state,
                f"{DEPLOYED_KEY}.{self.contract}",
                {
                    "address": result.address,
                    "transactionHash": result.transaction_hash,
                    "blockNumber": _block_number(output),
                },
            )

        if self.outputs is None:
            if self.run != "new":
                set_key_value(state, f"{OUTPUTS_KEY}.{self.contract}.{self.run}", output)
            return []

        if isinstance(self.outputs, str):
            path = _output_path(self.outputs)
            set_key_value(state, path, output)
            return [path]

        record = {
            "output": output,
            "address": result.address,
            "transactionHash": result.transaction_hash,
        }
        for target, source in self.outputs.items():
            set_key_value(state, _output_path(target), get_key_value(record, source))
        return []

    def summary(self) -> str:
        if self.is_util:
            return f"{self.run}({self.contract}, {self.at})"
        return f"{self.contract}.{self.run}"

    def emoji(self) -> str:
        if self.run == "new":
            return "📦"
        if self.run == "link":
            return "🔗"
        return "🧾"

    def message(self, decoration: bool = True) -> str:
        summary = self.summary()
        prefix = f"{self.emoji()}\t" if decoration else ""
        if self.description:
            return f"{prefix}{self.description} [{summary}]"
        return f"{prefix}{summary}"

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"contract": self.contract, "run": self.run}
        for field in ("at", "inputs", "outputs", "description"):
            value = getattr(self, field)
            if value is not None:
                data[field] = value if not isinstance(value, tuple) else list(value)
        return data


def _match_parameter(key: str, params: Sequence[str]) -> Optional[str]:
    if key in params:
        return key
    bare = key.lstrip("_")
    for param in params:
        if param and param.lstrip("_") == bare:
            return param
    return None


def _block_number(output: Any) -> Optional[int]:
    for path in ("transaction.blockNumber", "receipt.blockNumber", "blockNumber"):
        value = get_key_value(output, path, None) if isinstance(output, Mapping) else None
        if value is not None:
            return value
    return None


__all__ = ["Command", "escape_value", "is_reference", "resolve_value"]
