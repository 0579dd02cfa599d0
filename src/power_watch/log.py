"""
Structured logging helpers.
Every log line is a single JSON object printed to stdout (picked up by CloudWatch Logs).
"""

import json
import traceback
from typing import Any


def log_event(event: str, level: str = "info", **fields: Any) -> None:
    """
    Print one structured log line.

    Args:
        event: Short snake_case event name (e.g. "state_transition")
        level: "debug", "info", "warning" or "error"
        **fields: Extra JSON-serializable context
    """
    print(json.dumps({"event": event, "level": level, **fields}, ensure_ascii=False, default=str))


def log_error(event: str, error: BaseException, **fields: Any) -> None:
    """Log an exception together with its traceback."""
    log_event(
        event,
        level="error",
        error=str(error),
        error_type=type(error).__name__,
        traceback="".join(traceback.format_exception(type(error), error, error.__traceback__)),
        **fields,
    )
