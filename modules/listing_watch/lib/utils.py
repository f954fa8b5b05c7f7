from __future__ import annotations

import os
import re
from typing import Any


def truthy(v: Any) -> bool:
    """
    Normalize common truthy inputs from env/kwargs.
    Accepts bools, numbers or strings like: '1', 'true', 'yes', 'on'.
    """
    if isinstance(v, bool):
        return v
    if v is None:
        return False
    if isinstance(v, (int, float)):
        return v != 0
    return str(v).strip().lower() in {"1", "true", "yes", "on", "y", "t"}


def getenv_str(name: str, default: str | None = None) -> str | None:
    val = os.getenv(name)
    return val if val not in (None, "") else default


def safe_filename(name: str) -> str:
    """Keep topic names readable on disk but never let them escape the data dir."""
    cleaned = re.sub(r"[\\/\x00]+", "_", name.strip())
    return cleaned or "_"
