"""Stream events and their wire encodings."""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any

# Event names shared by the restore stream and the status stream
CONNECTED = "connected"
PROGRESS = "progress"
DONE = "done"
ERROR = "error"


def error_event_name(topic_event: str) -> str:
    """``backups`` -> ``backups-error``."""
    return f"{topic_event}-error"


@dataclass(frozen=True)
class StreamEvent:
    """One named event with a JSON-serializable payload."""

    event: str
    data: Any

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.event, "data": self.data}


def encode_ndjson(event: StreamEvent) -> str:
    """Encode as one newline-delimited JSON line (``application/x-ndjson``)."""
    return json.dumps(event.to_dict(), ensure_ascii=False) + "\n"


def encode_sse(event: StreamEvent) -> str:
    """Encode as a Server-Sent Events frame (``text/event-stream``)."""
    payload = json.dumps(event.data, ensure_ascii=False)
    return f"event: {event.event}\ndata: {payload}\n\n"
