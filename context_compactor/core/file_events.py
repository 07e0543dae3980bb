"""FileEventQueue: debounced on-disk file change notifications."""

from __future__ import annotations

import logging
import threading
import time
from collections import OrderedDict

from ..types import FileEvent, FileEventConfig

logger = logging.getLogger(__name__)


class FileEventQueue:
    """Bounded, thread-safe queue that coalesces bursts of events per path.

    Watchers call :meth:`push` from any thread. The orchestrator calls
    :meth:`drain` once per compaction; only events whose path has been quiet
    for ``debounce_ms`` are returned, the rest stay queued.
    """

    def __init__(self, config: FileEventConfig | None = None) -> None:
        self.config = config or FileEventConfig()
        self._lock = threading.Lock()
        self._pending: OrderedDict[str, FileEvent] = OrderedDict()
        self.dropped = 0

    def push(self, path: str, kind: str = "change", timestamp: float | None = None) -> None:
        event = FileEvent(path=path, kind=kind, timestamp=time.monotonic() if timestamp is None else timestamp)
        with self._lock:
            if path in self._pending:
                # later event for the same path restarts its debounce window
                self._pending.pop(path)
            elif len(self._pending) >= self.config.max_events:
                oldest, _ = self._pending.popitem(last=False)
                self.dropped += 1
                logger.warning("File event queue full, dropping event for %s", oldest)
            self._pending[path] = event

    def drain(self, now: float | None = None) -> list[FileEvent]:
        """Remove and return every settled event, oldest first."""
        now = time.monotonic() if now is None else now
        settle = self.config.debounce_ms / 1000
        with self._lock:
            ready = [e for e in self._pending.values() if now - e.timestamp >= settle]
            for event in ready:
                del self._pending[event.path]
        if ready:
            logger.debug("Drained %d file events", len(ready))
        return ready

    def __len__(self) -> int:
        with self._lock:
            return len(self._pending)
