"""Result records and the results file written for every run.

Each executed command produces one immutable :class:`Result`. Results are
kept in an append-only :class:`ResultLedger` and also logged through the
``playbook_runner.results`` logger, whose :class:`CommandResultHandler`
persists them as YAML. The ``failed`` section of that file is itself a
playbook, so a failed run can be replayed by passing the results file back
to the runner.
"""
from __future__ import annotations

import datetime
import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, Iterator, List, Optional

import yaml

from .logging_utils import RESULTS_LOGGER_NAME
from .serialization import to_plain

if TYPE_CHECKING:
    from .command import Command


@dataclass(frozen=True)
class Result:
    command: "Command"
    output: Any = None
    transaction_hash: Optional[str] = None
    address: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "command": self.command.to_dict(),
            "output": to_plain(self.output),
            "transactionHash": self.transaction_hash,
            "address": self.address,
        }


class ResultLedger:
    """Append-only list of results for one runner."""

    def __init__(self) -> None:
        self._results: List[Result] = []

    def append(self, result: Result) -> None:
        self._results.append(result)

    def __iter__(self) -> Iterator[Result]:
        return iter(list(self._results))

    def __len__(self) -> int:
        return len(self._results)

    def __getitem__(self, index: int) -> Result:
        return self._results[index]

    @property
    def outputs(self) -> List[Any]:
        return [result.output for result in self._results]


class CommandResultHandler(logging.Handler):
    """Logging handler that keeps ``succeeded``/``failed`` entries in a YAML file.

    Log records are expected to carry either ``result`` (a :class:`Result`)
    or ``command`` and ``error`` in their ``extra`` mapping.
    """

    def __init__(self, result_dir: Path, network: str, level: int = logging.DEBUG) -> None:
        super().__init__(level)
        self.result_dir = Path(result_dir)
        self.network = network
        self.timestamp = datetime.datetime.now(datetime.timezone.utc).strftime("%Y%m%dT%H%M%S")
        self.filename = self.build_filename("yml", "results")
        self._document: Dict[str, Any] = {
            "network": network,
            "started": datetime.datetime.now(datetime.timezone.utc).isoformat(),
            "succeeded": [],
            "failed": [],
        }
        self._write_lock = threading.Lock()

    def build_filename(self, extension: str, kind: str) -> Path:
        return self.result_dir / f"{self.timestamp}.{self.network}.{kind}.{extension}"

    def emit(self, record: logging.LogRecord) -> None:
        result: Optional[Result] = getattr(record, "result", None)
        command = getattr(record, "command", None)
        if result is None and command is None:
            return
        try:
            if result is not None:
                entry = result.to_dict()
                entry["message"] = record.getMessage()
                self._document["succeeded"].append(entry)
            else:
                error = getattr(record, "error", None)
                self._document["failed"].append(
                    {
                        **command.to_dict(),
                        "description": command.description or record.getMessage(),
                        "error": str(error) if error is not None else None,
                    }
                )
            self._flush_document()
        except Exception:  # pylint: disable=broad-except
            self.handleError(record)

    def _flush_document(self) -> None:
        with self._write_lock:
            self.result_dir.mkdir(parents=True, exist_ok=True)
            with self.filename.open("w", encoding="utf-8") as handle:
                yaml.safe_dump(self._document, handle, sort_keys=False)


def get_results_logger() -> logging.Logger:
    logger = logging.getLogger(RESULTS_LOGGER_NAME)
    logger.setLevel(logging.DEBUG)
    logger.propagate = False
    return logger


@contextmanager
def recording(logger: logging.Logger, handler: logging.Handler) -> Iterator[logging.Handler]:
    """Attach ``handler`` to ``logger`` only while the block runs."""
    logger.addHandler(handler)
    try:
        yield handler
    finally:
        logger.removeHandler(handler)


__all__ = ["Result", "ResultLedger", "CommandResultHandler", "get_results_logger", "recording"]
