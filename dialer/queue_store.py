"""
Queue Store — ordered call targets plus the current position.

Targets come from a TargetSource and are replaced wholesale on every
start / start-from / reset. The store never validates phone numbers;
that happens when a target is reached.
"""
from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Iterable, Optional, Protocol, runtime_checkable

import structlog

from dialer.errors import TargetSourceError
from models.schemas import CallTarget

logger = structlog.get_logger()


# ──────────────────────────────────────────────────────────────
#  Target sources
# ──────────────────────────────────────────────────────────────

@runtime_checkable
class TargetSource(Protocol):
    """Anything that can produce the ordered list of call targets."""

    def load(self) -> list[CallTarget]:
        ...


def parse_targets(raw: Any) -> list[CallTarget]:
    """
    Accept either a list of entries or an object whose values are entries
    (insertion order preserved). Anything else is an empty queue.
    """
    if isinstance(raw, dict):
        entries: Iterable[Any] = raw.values()
    elif isinstance(raw, list):
        entries = raw
    else:
        return []
    return [CallTarget.from_entry(e) for e in entries]


class JsonFileTargetSource:
    """Reads targets from a JSON file such as ``numbers.json``."""

    def __init__(self, path: str | Path):
        self.path = Path(path)

    def load(self) -> list[CallTarget]:
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            raise TargetSourceError(f"Target file not found: {self.path}", str(self.path))
        except (OSError, json.JSONDecodeError) as e:
            raise TargetSourceError(f"Unreadable target file {self.path}: {e}", str(self.path))

        targets = parse_targets(raw)
        logger.info("targets_loaded", source=str(self.path), count=len(targets))
        return targets


class StaticTargetSource:
    """In-memory source; entries are parsed the same way as the JSON file."""

    def __init__(self, entries: Any):
        self.entries = entries

    def load(self) -> list[CallTarget]:
        return parse_targets(self.entries)


# ──────────────────────────────────────────────────────────────
#  Queue Store
# ──────────────────────────────────────────────────────────────

class QueueStore:
    """Ordered targets and the index of the current one."""

    def __init__(self, targets: Optional[list[CallTarget]] = None):
        self._targets: tuple[CallTarget, ...] = tuple(targets or ())
        self._index = 0

    def __len__(self) -> int:
        return len(self._targets)

    @property
    def targets(self) -> tuple[CallTarget, ...]:
        return self._targets

    @property
    def index(self) -> int:
        return self._index

    @property
    def exhausted(self) -> bool:
        return self._index >= len(self._targets)

    def load(self, source: TargetSource) -> tuple[CallTarget, ...]:
        self.replace(source.load())
        return self._targets

    def replace(self, targets: list[CallTarget], index: int = 0) -> None:
        if not 0 <= index <= len(targets):
            raise ValueError(f"index {index} outside 0..{len(targets)}")
        self._targets = tuple(targets)
        self._index = index

    def seek(self, index: int) -> int:
        """Reposition within the loaded targets; ``len`` means exhausted."""
        if not 0 <= index <= len(self._targets):
            raise ValueError(f"index {index} outside 0..{len(self._targets)}")
        self._index = index
        return self._index

    def current(self) -> Optional[CallTarget]:
        if self.exhausted:
            return None
        return self._targets[self._index]

    def remaining(self) -> int:
        return max(len(self._targets) - self._index, 0)

    def advance(self) -> int:
        """Move to the next position; never past the end."""
        if self._index < len(self._targets):
            self._index += 1
        return self._index
