from __future__ import annotations

import logging
from pathlib import Path

log = logging.getLogger(__name__)


def write_signal(path: str | Path) -> Path:
    """Create the empty marker file that tells the publish pipeline new data exists."""
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_text("", encoding="utf-8")
    log.info("Created push flag for CI pipeline at %s", p)
    return p
