"""Detects newly appended trigger lines in per-node log sequences.

Each node gets a cursor: how many log entries have already been scanned.
A scan only looks at entries past the cursor, so a line fires at most once
no matter how often the same log is polled. When a log comes back shorter
than the cursor (the device reconnected and its log was cleared), the cursor
is reset and the current entries are taken as the new baseline without
firing; trigger lines inside that baseline are not reported.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional, Sequence

from constants import TRIGGER_PHRASES


@dataclass(frozen=True)
class TriggerEvent:
    node_id: str
    text: str
    index: int


class LogWatcher:
    """Per-node cursor map plus the trigger predicate."""

    def __init__(self, phrases: Iterable[str] = TRIGGER_PHRASES):
        self.phrases = tuple(p.lower() for p in phrases if p)
        self._cursors: dict[str, int] = {}

    def matches(self, text: str) -> bool:
        lowered = text.lower()
        return any(p in lowered for p in self.phrases)

    def cursor(self, node_id: str) -> int:
        return self._cursors.get(node_id, 0)

    def peek(self, node_id: str, logs: Sequence[str]) -> list[TriggerEvent]:
        """Events scan() would return, leaving the cursor where it is."""
        n = len(logs)
        c = self._cursors.get(node_id, 0)
        if n < c:
            # Log was cleared/rotated: what is there now counts as already seen
            return []
        return [
            TriggerEvent(node_id=node_id, text=logs[i], index=i)
            for i in range(c, n)
            if self.matches(logs[i])
        ]

    def advance(self, node_id: str, logs: Sequence[str]) -> None:
        """Mark every entry of `logs` as scanned."""
        self._cursors[node_id] = len(logs)

    def scan(self, node_id: str, logs: Sequence[str]) -> list[TriggerEvent]:
        """Return trigger events for entries appended since the last scan."""
        events = self.peek(node_id, logs)
        self.advance(node_id, logs)
        return events

    def reset(self, node_id: Optional[str] = None) -> None:
        """Drop one node's cursor, or all of them."""
        if node_id is None:
            self._cursors.clear()
        else:
            self._cursors.pop(node_id, None)
