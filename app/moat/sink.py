from __future__ import annotations

import threading
from typing import Optional, Sequence, Tuple

from app.observability.logging import log


class ResultSink:
    """Receiver for what the UI would show. Default implementation ignores everything."""

    def challenge_ready(self, image: bytes) -> None:
        pass

    def bridges_obtained(self, lines: Sequence[str], enable_bridges: bool = True) -> None:
        pass

    def failed(self, message: str) -> None:
        pass


class MemorySink(ResultSink):
    """Keeps the latest event of each kind so an HTTP poller can read it back."""

    def __init__(self):
        self._lock = threading.Lock()
        self.image: Optional[bytes] = None
        self.bridges: Optional[Tuple[str, ...]] = None
        self.bridges_enabled: bool = False
        self.error: Optional[str] = None

    def challenge_ready(self, image: bytes) -> None:
        with self._lock:
            self.image = image
            self.error = None

    def bridges_obtained(self, lines: Sequence[str], enable_bridges: bool = True) -> None:
        with self._lock:
            self.image = None
            self.bridges = tuple(lines)
            self.bridges_enabled = bool(enable_bridges)
            self.error = None

    def failed(self, message: str) -> None:
        with self._lock:
            self.error = message
        log(event="moat_attempt_failed", error=message)
