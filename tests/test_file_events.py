"""Tests for the debounced file event queue."""

import threading

from context_compactor.core.file_events import FileEventQueue
from context_compactor.types import FileEventConfig


class TestFileEventQueue:
    def test_unsettled_events_stay_queued(self):
        queue = FileEventQueue(FileEventConfig(debounce_ms=200))
        queue.push("src/a.py", timestamp=10.0)
        assert queue.drain(now=10.1) == []
        assert len(queue) == 1
        [event] = queue.drain(now=10.3)
        assert event.path == "src/a.py"
        assert len(queue) == 0

    def test_burst_is_coalesced(self):
        queue = FileEventQueue(FileEventConfig(debounce_ms=200))
        queue.push("src/a.py", "create", timestamp=1.0)
        queue.push("src/a.py", "change", timestamp=1.1)
        queue.push("src/a.py", "change", timestamp=1.15)
        assert queue.drain(now=1.3) == []
        events = queue.drain(now=1.4)
        assert len(events) == 1
        assert events[0].kind == "change"
        assert events[0].timestamp == 1.15

    def test_bounded(self):
        queue = FileEventQueue(FileEventConfig(debounce_ms=0, max_events=2))
        for i, path in enumerate(["a.py", "b.py", "c.py"]):
            queue.push(path, timestamp=float(i))
        assert queue.dropped == 1
        assert [e.path for e in queue.drain(now=10.0)] == ["b.py", "c.py"]

    def test_concurrent_pushes(self):
        queue = FileEventQueue(FileEventConfig(debounce_ms=0, max_events=1000))

        def worker(n):
            for i in range(50):
                queue.push(f"w{n}/f{i}.py", timestamp=0.0)

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert len(queue.drain(now=1.0)) == 200
