from __future__ import annotations

from typing import Optional


class PlaybookError(Exception):
    """Base class for every error raised while reading or running playbooks."""


class ConfigurationError(PlaybookError):
    """Malformed options, initial state or step shape."""


class StateReferenceError(PlaybookError):
    """A ``$path`` reference that does not resolve against the current state."""

    def __init__(self, path: str, message: Optional[str] = None) -> None:
        self.path = path
        super().__init__(message or f"Unresolved state reference: {path}")


class ResolutionError(PlaybookError):
    """Named arguments that cannot be matched to the method's parameters."""


class NotFoundError(PlaybookError):
    """Unknown contract artifact or method."""


class RemoteCallError(PlaybookError):
    """The call gateway failed to execute a call or the transaction reverted."""

    def __init__(
        self,
        message: str,
        *,
        tx_hash: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> None:
        self.tx_hash = tx_hash
        self.reason = reason
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


__all__ = [
    "PlaybookError",
    "ConfigurationError",
    "StateReferenceError",
    "ResolutionError",
    "NotFoundError",
    "RemoteCallError",
]
