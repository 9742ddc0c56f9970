from __future__ import annotations

import json
import logging
import sys


class JsonFormatter(logging.Formatter):
    """Render log records as single-line JSON objects.

    Example:
        ```python
        handler.setFormatter(JsonFormatter())
        ```
    """

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "level": record.levelname,
            "msg": record.getMessage(),
            "logger": record.name,
            "time": self.formatTime(record, datefmt="%Y-%m-%dT%H:%M:%S"),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload)


def setup_logging(level: str | int = logging.INFO, *, json_format: bool = False) -> None:
    """Install one stdout handler on the root logger.

    Example:
        ```python
        setup_logging("DEBUG", json_format=True)
        ```
    """
    handler = logging.StreamHandler(sys.stdout)
    if json_format:
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
    root = logging.getLogger()
    root.setLevel(level.upper() if isinstance(level, str) else level)
    root.handlers = [handler]
