"""Contract artifact (ABI + bytecode) lookup.

Supports Truffle (``build/contracts/<Name>.json``) and Foundry
(``out/<Name>.sol/<Name>.json``) layouts as well as bare ABI lists.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from .constants import ARTIFACT_SEARCH_DIRS
from .errors import ConfigurationError, NotFoundError

logger = logging.getLogger("playbook_runner.abi")

LinkReferences = Dict[str, Dict[str, List[Dict[str, int]]]]


@dataclass
class Artifact:
    name: str
    abi: List[Dict[str, Any]]
    bytecode: Optional[str] = None
    link_references: LinkReferences = field(default_factory=dict)
    path: Optional[Path] = None


def parse_artifact(name: str, data: Any, path: Optional[Path] = None) -> Artifact:
    # Some artifact JSONs wrap the ABI under an "abi" key
    if isinstance(data, list):
        return Artifact(name=name, abi=data, path=path)
    if not isinstance(data, Mapping) or not isinstance(data.get("abi"), list):
        raise ConfigurationError(
            f"Artifact for {name} does not contain a valid ABI (expected dict with 'abi' key or list)"
        )

    bytecode = data.get("bytecode")
    link_references: LinkReferences = {}
    if isinstance(bytecode, Mapping):
        link_references = dict(bytecode.get("linkReferences") or {})
        bytecode = bytecode.get("object")
    link_references = link_references or dict(data.get("linkReferences") or {})
    if isinstance(bytecode, str) and bytecode and not bytecode.startswith("0x"):
        bytecode = "0x" + bytecode
    return Artifact(
        name=name,
        abi=list(data["abi"]),
        bytecode=bytecode or None,
        link_references=link_references,
        path=path,
    )


def load_artifact_file(path: Path, name: Optional[str] = None) -> Artifact:
    if not path.is_file():
        raise NotFoundError(f"Artifact file not found: {path}")
    text = path.read_text(encoding="utf-8")
    if not text.strip():
        raise ConfigurationError(f"Artifact file is empty: {path}")
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ConfigurationError(f"Artifact file is not valid JSON: {path} - {exc}") from exc
    return parse_artifact(name or path.stem, data, path)


class AbiReader:
    """Find and cache contract artifacts by contract name."""

    def __init__(
        self,
        contracts_dir: Optional[Union[str, Path]] = None,
        working_directory: Optional[Union[str, Path]] = None,
        artifacts: Optional[Mapping[str, Any]] = None,
    ) -> None:
        base = Path(working_directory or Path.cwd())
        dirs: List[Path] = []
        if contracts_dir:
            explicit = Path(contracts_dir).expanduser()
            dirs.append(explicit if explicit.is_absolute() else base / explicit)
        dirs.extend(base / candidate for candidate in ARTIFACT_SEARCH_DIRS)
        self.search_dirs = dirs
        self._artifacts: Dict[str, Artifact] = {}
        self._methods: Dict[str, Dict[str, Optional[Dict[str, Any]]]] = {}
        for name, data in (artifacts or {}).items():
            self._artifacts[name] = data if isinstance(data, Artifact) else parse_artifact(name, data)

    def candidate_paths(self, name: str) -> Iterable[Path]:
        for directory in self.search_dirs:
            yield directory / f"{name}.json"
            yield directory / f"{name}.sol" / f"{name}.json"

    def find_artifact(self, name: str) -> Optional[Artifact]:
        if name in self._artifacts:
            return self._artifacts[name]
        for path in self.candidate_paths(name):
            if path.is_file():
                artifact = load_artifact_file(path, name)
                logger.debug("Loaded artifact %s from %s", name, path)
                self._artifacts[name] = artifact
                return artifact
        return None

    def get_artifact(self, name: str) -> Artifact:
        artifact = self.find_artifact(name)
        if artifact is None:
            searched = ", ".join(str(d) for d in self.search_dirs)
            raise NotFoundError(f"No artifact found for {name} (searched: {searched})")
        return artifact

    def find_method(self, contract_name: str, method_name: str) -> Optional[Dict[str, Any]]:
        """Return the ABI entry for ``method_name`` or ``None`` when the ABI has none.

        ``new`` maps to the constructor entry.
        """
        cache = self._methods.setdefault(contract_name, {})
        if method_name in cache:
            return cache[method_name]

        artifact = self.get_artifact(contract_name)
        found = None
        for entry in artifact.abi:
            if method_name == "new" and entry.get("type") == "constructor":
                found = entry
                break
            if entry.get("name") == method_name and entry.get("type", "function") == "function":
                found = entry
                break
        cache[method_name] = found
        return found

    def constant_methods(self, contract_name: str) -> List[Dict[str, Any]]:
        """ABI entries that can be read without arguments or a transaction."""
        artifact = self.get_artifact(contract_name)
        return [
            entry
            for entry in artifact.abi
            if entry.get("type", "function") == "function"
            and not entry.get("inputs")
            and (entry.get("stateMutability") in ("view", "pure") or entry.get("constant"))
        ]


__all__ = ["Artifact", "AbiReader", "parse_artifact", "load_artifact_file"]
