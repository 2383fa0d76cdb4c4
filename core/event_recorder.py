# core/event_recorder.py
import json
import logging
import os
import threading
from datetime import datetime, timezone
from typing import Any, Dict

from core import config

SCHEMA_VERSION = 1

logger = logging.getLogger(__name__)

_lock = threading.Lock()
_recorder = None


def new_run_id() -> str:
    return f"run_{datetime.now(timezone.utc).strftime('%Y%m%d_%H%M%S')}"


class EventRecorder:
    def __init__(self, log_dir: str | None = None):
        self.run_id = new_run_id()
        self.log_dir = log_dir or config.LOG_DIR
        self.log_path = os.path.join(self.log_dir, "events.jsonl")

    def record(self, event_type: str, payload: Dict[str, Any], actor: str = "user"):
        """
        Writes a structured, immutable event to the log.
        """
        entry = {
            "schema_version": SCHEMA_VERSION,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "run_id": self.run_id,
            "event_type": event_type,
            "actor": actor,
            "payload": payload,
        }

        try:
            with _lock:
                os.makedirs(self.log_dir, exist_ok=True)
                with open(self.log_path, "a", encoding="utf-8") as f:
                    f.write(json.dumps(entry, default=str) + "\n")
        except OSError as e:
            # Never crash the gallery because the event log is unwritable
            logger.warning("Event logging failed: %s", e)


def get_event_recorder() -> EventRecorder:
    """Singleton accessor for the recorder."""
    global _recorder
    if _recorder is None:
        _recorder = EventRecorder()
    return _recorder


def set_event_recorder(recorder: EventRecorder | None) -> None:
    """Swap the singleton (tests point it at a temp directory)."""
    global _recorder
    _recorder = recorder
