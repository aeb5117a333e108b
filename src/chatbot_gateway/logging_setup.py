from __future__ import annotations

import logging
import sys

LOG_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"


def configure_logging(level: int | str = logging.INFO) -> None:
    """Install one timestamped stream handler on the root logger."""
    root = logging.getLogger()
    if isinstance(level, str):
        level = level.upper()
    root.setLevel(level)
    for handler in root.handlers:
        if getattr(handler, "_chatbot_gateway", False):
            handler.setLevel(level)
            return
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler._chatbot_gateway = True  # type: ignore[attr-defined]
    root.addHandler(handler)
