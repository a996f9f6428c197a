"""Lifecycle event emission and call timing."""

from __future__ import annotations

import itertools
import sys
import time
from datetime import datetime, timezone
from typing import Any, TextIO

import orjson


class Timer:
    """Context manager measuring wall time in whole milliseconds."""

    def __init__(self) -> None:
        self.start: float = 0
        self.elapsed_ms: int = 0

    def __enter__(self) -> "Timer":
        self.start = time.perf_counter()
        return self

    def __exit__(self, *args: Any) -> None:
        self.elapsed_ms = int((time.perf_counter() - self.start) * 1000)


class EventEmitter:
    """Writes lifecycle events as NDJSON, to stderr unless another stream is given.

    Each line is ``{"event", "seq", "timestamp", "data"}``; ``seq`` counts up
    from 1 per emitter so consumers can detect dropped lines. A disabled
    emitter writes nothing.
    """

    def __init__(self, enabled: bool = False, stream: TextIO | None = None) -> None:
        self.enabled = enabled
        self._stream = stream
        self._seq = itertools.count(1)

    def emit(self, event: str, data: dict[str, Any] | None = None) -> None:
        if not self.enabled:
            return
        payload = {
            "event": event,
            "seq": next(self._seq),
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "data": data or {},
        }
        stream = self._stream or sys.stderr
        stream.write(orjson.dumps(payload, default=str).decode() + "\n")
        stream.flush()
