from __future__ import annotations

import logging
import os

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./finance_tracker.db")
FRONTEND_ORIGIN = os.getenv("FRONTEND_ORIGIN", "http://localhost:3000")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(level: str | None = None) -> None:
    resolved = (level or LOG_LEVEL).strip().upper()
    numeric_level = logging.getLevelName(resolved)
    if not isinstance(numeric_level, int):
        numeric_level = logging.INFO
    logging.basicConfig(level=numeric_level, format=LOG_FORMAT)
    logging.getLogger("finance_tracker").setLevel(numeric_level)
