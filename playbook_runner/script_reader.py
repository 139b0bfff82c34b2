"""Read playbooks and input files from disk."""
from __future__ import annotations

import glob
import importlib.util
import json
import logging
import types
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Set, Union

import yaml

from .constants import INCLUDE_KEY, SCRIPT_SUFFIXES
from .errors import ConfigurationError, NotFoundError
from .state import deep_merge

logger = logging.getLogger("playbook_runner.scripts")

PathLike = Union[str, Path]


@dataclass
class Playbook:
    name: str
    steps: List[Any] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.steps)


def _is_glob(path: str) -> bool:
    return any(char in path for char in "*?[")


class ScriptReader:
    def __init__(self, working_directory: Optional[PathLike] = None) -> None:
        self.working_directory = Path(working_directory or Path.cwd())

    @staticmethod
    def coerce_relative_path(path: PathLike, base: PathLike) -> Path:
        candidate = Path(path).expanduser()
        if candidate.is_absolute():
            return candidate
        return (Path(base) / candidate).resolve()

    def expand(self, path_or_glob: PathLike) -> List[Path]:
        """Resolve a file, directory or glob pattern into an ordered list of files."""
        text = str(path_or_glob)
        if _is_glob(text):
            pattern = str(self.coerce_relative_path(text, self.working_directory))
            matches = sorted(Path(match) for match in glob.glob(pattern, recursive=True))
            return [match for match in matches if match.is_file()]

        path = self.coerce_relative_path(text, self.working_directory)
        if path.is_dir():
            return sorted(
                candidate
                for candidate in path.rglob("*")
                if candidate.is_file() and candidate.suffix in SCRIPT_SUFFIXES
            )
        if not path.is_file():
            raise NotFoundError(f"Script not found: {path}")
        return [path]

    def load_file(self, path: Path) -> Any:
        if path.suffix == ".py":
            return _load_module_namespace(path)
        text = path.read_text(encoding="utf-8")
        try:
            if path.suffix == ".json":
                return json.loads(text)
            documents = [doc for doc in yaml.safe_load_all(text) if doc is not None]
        except (json.JSONDecodeError, yaml.YAMLError) as exc:
            raise ConfigurationError(f"Could not parse {path}: {exc}") from exc
        if len(documents) == 1:
            return documents[0]
        return documents

    def read(self, path_or_glob: PathLike) -> List[Playbook]:
        """Return one playbook per file matched by ``path_or_glob``."""
        files = self.expand(path_or_glob)
        if not files:
            logger.warning("No playbooks matched %s", path_or_glob)
        playbooks = []
        for path in files:
            steps = self.to_steps(self.load_file(path), path)
            playbooks.append(Playbook(name=str(path), steps=steps))
        return playbooks

    @staticmethod
    def to_steps(document: Any, source: Any = None) -> List[Any]:
        if document is None:
            return []
        if isinstance(document, list):
            return list(document)
        if isinstance(document, Mapping):
            if "failed" in document and "succeeded" in document:
                # a results file: replay only what failed
                return [
                    {key: value for key, value in entry.items() if key != "error"}
                    for entry in document.get("failed") or []
                ]
            return [dict(document)]
        raise ConfigurationError(f"Unexpected playbook content in {source}: {type(document).__name__}")

    def merge(
        self,
        paths: Union[PathLike, Sequence[PathLike]],
        _seen: Optional[Set[Path]] = None,
    ) -> Dict[str, Any]:
        """Deep-merge mapping files in order; later files win on conflicts.

        A file may list further files under ``$include``; those are merged
        first (relative to the including file) so the including file wins.
        """
        if isinstance(paths, (str, Path)):
            paths = [paths]
        seen = _seen if _seen is not None else set()
        merged: Dict[str, Any] = {}
        for entry in paths:
            for path in self.expand(entry):
                merged = deep_merge(merged, self._load_with_includes(path, seen))
        return merged

    def _load_with_includes(self, path: Path, seen: Set[Path]) -> Dict[str, Any]:
        resolved = path.resolve()
        if resolved in seen:
            raise ConfigurationError(f"Circular {INCLUDE_KEY} of {resolved}")
        seen.add(resolved)
        try:
            data = self.load_file(resolved)
            if data is None:
                return {}
            if not isinstance(data, Mapping):
                raise ConfigurationError(f"Expected a mapping in {resolved}, got {type(data).__name__}")
            data = dict(data)
            includes = data.pop(INCLUDE_KEY, None) or []
            if isinstance(includes, str):
                includes = [includes]
            merged: Dict[str, Any] = {}
            nested = ScriptReader(resolved.parent)
            for include in includes:
                merged = deep_merge(merged, nested.merge(include, seen))
            return deep_merge(merged, data)
        finally:
            seen.discard(resolved)


def _load_module_namespace(path: Path) -> Dict[str, Any]:
    spec = importlib.util.spec_from_file_location(f"playbook_runner_user_{path.stem}", path)
    if spec is None or spec.loader is None:
        raise ConfigurationError(f"Cannot import {path}")
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return {
        name: value
        for name, value in vars(module).items()
        if not name.startswith("_") and not isinstance(value, types.ModuleType)
    }


__all__ = ["Playbook", "ScriptReader"]
