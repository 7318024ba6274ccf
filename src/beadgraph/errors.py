"""Error taxonomy shared by the tracker gateway, sync controller and web layer."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class ErrorKind(str, Enum):
    NOT_FOUND = "not_found"
    CYCLE = "cycle"
    DUPLICATE = "duplicate"
    VALIDATION = "validation"
    SYNC_FAILURE = "sync_failure"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class TrackerError:
    kind: ErrorKind
    message: str

    def to_json(self) -> dict:
        return {"error": self.message, "kind": self.kind.value}


class SyncFailure(RuntimeError):
    """Raised inside a flush when one of its steps fails."""

    def __init__(self, step: str, message: str) -> None:
        super().__init__(message)
        self.step = step
        self.message = message


# Checked in order; the first matching keyword wins.
_KEYWORDS: tuple[tuple[ErrorKind, tuple[str, ...]], ...] = (
    (ErrorKind.NOT_FOUND, ("not found", "no issue found")),
    (ErrorKind.CYCLE, ("cycle", "circular")),
    (ErrorKind.DUPLICATE, ("already", "exists", "duplicate")),
)

# Kinds each bd command can report. Cycle and duplicate only make sense for
# `dep add`; everything else can at most fail to find an issue.
ISSUE_ERRORS = frozenset({ErrorKind.NOT_FOUND})
DEPENDENCY_ERRORS = frozenset({ErrorKind.NOT_FOUND, ErrorKind.CYCLE, ErrorKind.DUPLICATE})

_CANONICAL = {
    ErrorKind.NOT_FOUND: "Issue not found",
    ErrorKind.CYCLE: "Adding this dependency would create a cycle",
    ErrorKind.DUPLICATE: "Dependency already exists",
}


def classify_error(message: str, allowed: frozenset[ErrorKind] = DEPENDENCY_ERRORS) -> ErrorKind:
    lowered = message.lower()
    for kind, keywords in _KEYWORDS:
        if kind in allowed and any(word in lowered for word in keywords):
            return kind
    return ErrorKind.UNKNOWN


def normalize_error(message: str, allowed: frozenset[ErrorKind] = ISSUE_ERRORS) -> TrackerError:
    """Map free-text tracker output onto the taxonomy.

    Only the kinds in *allowed* are recognised, so an ``update`` failure that
    happens to say "already" stays UNKNOWN. Known kinds get the canonical
    message so every tracker implementation reports them identically.
    Unknown errors keep the original text.
    """
    kind = classify_error(message, allowed)
    return TrackerError(kind, _CANONICAL.get(kind, message))
