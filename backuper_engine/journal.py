from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Mapping

from .clock import Clock, SystemClock


@dataclass(frozen=True)
class JournalEvent:
    """
    A single append-only journal record.

    Parameters
    ----------
    timestamp : datetime
        Event time (timezone-aware).
    event : str
        Stable event identifier (e.g., 'backup_started', 'chain_resolved').
    data : Mapping[str, Any]
        Structured event payload. Must be JSON-serializable.
    """

    timestamp: datetime
    event: str
    data: Mapping[str, Any]


class OperationJournal:
    """
    Append-only JSONL journal for backup and restore operations.

    Notes
    -----
    - Each call to `append()` writes one JSON object per line (JSONL).
    - The journal is an inspectable artifact for debugging and audit; the
      engine never reads it back.
    - Keep the journal outside a restore destination: reconciliation prunes
      every path that is not in the archive's mirror.
    """

    def __init__(self, journal_path: Path, *, clock: Clock | None = None) -> None:
        self._journal_path = journal_path
        self._clock = clock or SystemClock()
        self._journal_path.parent.mkdir(parents=True, exist_ok=True)

    @property
    def path(self) -> Path:
        """Return the on-disk path to the journal file."""
        return self._journal_path

    def append(self, event: str, data: Mapping[str, Any]) -> None:
        """
        Append a new event record.

        Parameters
        ----------
        event : str
            Stable event identifier (e.g., 'backup_completed').
        data : Mapping[str, Any]
            JSON-serializable event payload: identifiers, counts, paths as
            strings.

        Raises
        ------
        OSError
            If the journal cannot be written.
        TypeError
            If `data` contains non-JSON-serializable values.
        """
        record = JournalEvent(timestamp=self._clock.now(), event=event, data=data)
        line = json.dumps(
            {
                "ts": record.timestamp.isoformat(),
                "event": record.event,
                "data": record.data,
            },
            ensure_ascii=False,
            sort_keys=True,
            separators=(",", ":"),
        )

        with self._journal_path.open("a", encoding="utf-8", newline="\n") as handle:
            handle.write(line + "\n")
            handle.flush()

    def read_events(self) -> list[dict[str, Any]]:
        """Return all recorded events in order (missing journal -> empty list)."""
        if not self._journal_path.exists():
            return []
        with self._journal_path.open("r", encoding="utf-8") as handle:
            return [json.loads(line) for line in handle if line.strip()]
