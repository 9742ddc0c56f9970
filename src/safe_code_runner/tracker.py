from __future__ import annotations

import threading
from types import MappingProxyType
from typing import Mapping


class InvocationTracker:
    """Per-language count of accepted requests.

    Counters only grow; they reset when the process restarts.

    Example:
        ```python
        tracker = InvocationTracker()
        tracker.record("python")
        assert tracker.snapshot()["python"] == 1
        ```
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._counts: dict[str, int] = {}

    def record(self, language_id: str) -> None:
        with self._lock:
            self._counts[language_id] = self._counts.get(language_id, 0) + 1

    def snapshot(self) -> Mapping[str, int]:
        """Return a read-only copy of the current counters.

        Example:
            ```python
            counts = dict(tracker.snapshot())
            ```
        """
        with self._lock:
            return MappingProxyType(dict(self._counts))
