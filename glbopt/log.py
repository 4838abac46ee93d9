from __future__ import annotations

import logging
import os
from typing import Optional


def configure_logging(default_level: str = "INFO", level: Optional[str] = None) -> None:
    level_name = (level or os.getenv("LOG_LEVEL", default_level)).upper()
    logging.basicConfig(
        level=getattr(logging, level_name, logging.INFO),
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )
