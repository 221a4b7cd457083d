"""Newline-delimited JSON event stream.

One JSON object per lifecycle step is the sole machine-readable contract between
the wrapper commands and their caller, so nothing else may be written to the
event stream.
"""

import json
import sys
from typing import Any, Dict, List, Optional, TextIO


class EventEmitter:
    """Writes one JSON object per line to a stream (stdout by default)."""

    def __init__(self, stream: Optional[TextIO] = None):
        self._stream = stream
        self.history: List[Dict[str, Any]] = []

    @property
    def stream(self) -> TextIO:
        # Resolved lazily so test runners that swap sys.stdout are honoured
        return self._stream if self._stream is not None else sys.stdout

    def emit(self, event: str, **fields: Any) -> Dict[str, Any]:
        payload = {"event": event, **fields}
        self.write(payload)
        return payload

    def write(self, payload: Dict[str, Any]) -> None:
        self.history.append(payload)
        self.stream.write(json.dumps(payload, default=str) + "\n")
        self.stream.flush()


class NullEmitter(EventEmitter):
    """Records events without writing them anywhere."""

    def write(self, payload: Dict[str, Any]) -> None:
        self.history.append(payload)
