"""Loop steps: run a block of steps once per element of a collection.

::

    for: transfer in $inputs.transfers
    each:
      - contract: MetaCoin
        run: sendCoin
        inputs:
          receiver: $transfer.address
          amount: $transfer.amount

``for`` may also be just a path (``for: $inputs.transfers``), in which case
the element is bound to ``$item``. ``limit`` caps how many elements are
expanded. Elements are never skipped or reordered.
"""
from __future__ import annotations

from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence, Tuple

from .command import escape_value, is_reference
from .constants import DEFAULT_LOOP_VARIABLE, ESCAPED_REFERENCE_PREFIX, LOOP_SPEC_PATTERN
from .errors import ConfigurationError, StateReferenceError
from .state import get_key_value, split_path

PENDING = "pending"
EXPANDING = "expanding"
EXHAUSTED = "exhausted"


def _variable_name(name: str) -> str:
    name = name.strip()
    return name if name.startswith("$") else f"${name}"


class CommandLoop:
    def __init__(self, step: Mapping[str, Any]) -> None:
        if not CommandLoop.is_command_loop(step):
            raise ConfigurationError(f"A loop needs 'for' and 'each': {step!r}")
        unknown = sorted(set(step) - {"for", "each", "as", "limit", "description"})
        if unknown:
            raise ConfigurationError(f"Unexpected field(s) {', '.join(unknown)} in loop {dict(step)!r}")

        self.variable, self.source = self._parse_for(step["for"], step.get("as"))

        each = step["each"]
        if isinstance(each, Mapping):
            each = [each]
        if not isinstance(each, (list, tuple)) or not each:
            raise ConfigurationError(f"Loop 'each' must be a non-empty list of steps: {step!r}")
        self.each: List[Any] = list(each)

        limit = step.get("limit")
        if limit is not None and (isinstance(limit, bool) or not isinstance(limit, int) or limit < 0):
            raise ConfigurationError(f"Loop 'limit' must be a non-negative integer, got {limit!r}")
        self.limit: Optional[int] = limit
        self.description: Optional[str] = step.get("description")
        self.status = PENDING

    @staticmethod
    def is_command_loop(step: Any) -> bool:
        return isinstance(step, Mapping) and "for" in step and "each" in step

    @staticmethod
    def _parse_for(spec: Any, alias: Optional[str]) -> Tuple[str, Any]:
        if isinstance(spec, (list, tuple)):
            return _variable_name(alias or DEFAULT_LOOP_VARIABLE), list(spec)
        if not isinstance(spec, str) or not spec.strip():
            raise ConfigurationError(f"Loop 'for' must name a collection, got {spec!r}")
        match = LOOP_SPEC_PATTERN.match(spec)
        if match:
            name, path = match.groups()
            return _variable_name(name), path
        return _variable_name(alias or DEFAULT_LOOP_VARIABLE), spec.strip()

    def collection(self, state: Mapping[str, Any]) -> List[Any]:
        if isinstance(self.source, list):
            items = self.source
        else:
            items = get_key_value(state, self.source)
            if not isinstance(items, (list, tuple)):
                raise ConfigurationError(
                    f"Loop over '{self.source}' expects a list, got {type(items).__name__}"
                )
        items = list(items)
        if self.limit is not None:
            items = items[: self.limit]
        return items

    def count(self, state: Mapping[str, Any]) -> int:
        """Number of elements the loop will expand to."""
        return len(self.collection(state))

    def step_count(self, state: Mapping[str, Any]) -> int:
        """Number of template steps run in total, used for progress reporting."""
        return self.count(state) * len(self.each)

    def expand(self, state: Mapping[str, Any]) -> Iterator[List[Any]]:
        """Yield one bound copy of ``each`` per element, in collection order."""
        if self.status != PENDING:
            raise ConfigurationError(f"Loop over '{self.source}' was already expanded")
        self.status = EXPANDING
        for element in self.collection(state):
            yield [self.bind(step, element) for step in self.each]
        self.status = EXHAUSTED

    def bind(self, value: Any, element: Any, escape: bool = True) -> Any:
        """Return a copy of ``value`` with loop variable references replaced by ``element``.

        Bound values are escaped so strings inside the element that look like
        references (``"$USD"``) reach the call literally.
        """
        if isinstance(value, str):
            bound, resolved = self._bind_reference(value, element)
            if not bound:
                return value
            return escape_value(resolved) if escape else resolved
        if CommandLoop.is_command_loop(value):
            return self._bind_loop(value, element)
        if isinstance(value, Mapping):
            return {key: self.bind(item, element, escape) for key, item in value.items()}
        if isinstance(value, (list, tuple)):
            return [self.bind(item, element, escape) for item in value]
        return value

    def _bind_reference(self, value: str, element: Any) -> Tuple[bool, Any]:
        if value.startswith(ESCAPED_REFERENCE_PREFIX) or not is_reference(value):
            return False, None
        tokens = split_path(value)
        if tokens[0] != self.variable:
            return False, None
        if len(tokens) == 1:
            return True, element
        try:
            return True, get_key_value(element, ".".join(tokens[1:]))
        except StateReferenceError:
            raise StateReferenceError(value) from None

    def _bind_loop(self, step: Mapping[str, Any], element: Any) -> Dict[str, Any]:
        # a nested loop whose collection comes from this loop's element is
        # rewritten to iterate over the resolved list directly
        spec = step["for"]
        variable, source = self._parse_for(spec, step.get("as"))
        if variable == self.variable:
            # the inner variable shadows ours inside its own block
            bound = {key: item for key, item in step.items() if key != "for"}
        else:
            bound = {key: self.bind(item, element) for key, item in step.items() if key != "for"}
        if isinstance(spec, str):
            is_bound, resolved = self._bind_reference(source, element)
            if is_bound:
                bound["for"] = resolved
                bound["as"] = variable
                return bound
            bound["for"] = spec
            return bound
        bound["for"] = self.bind(spec, element, escape=False)
        return bound

    def summary(self) -> str:
        return f'for each "{self.source}" run {len(self.each)} commands'


def loop_step_count(steps: Sequence[Any], state: Mapping[str, Any]) -> int:
    total = 0
    for step in steps:
        if CommandLoop.is_command_loop(step):
            try:
                total += CommandLoop(step).step_count(state)
            except StateReferenceError:
                # collection is produced by an earlier step; it is resolved
                # (and reported if still missing) when the loop itself runs
                total += 1
        else:
            total += 1
    return total


__all__ = ["CommandLoop", "loop_step_count", "PENDING", "EXPANDING", "EXHAUSTED"]
