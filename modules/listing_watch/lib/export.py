from __future__ import annotations

import logging
import re
from collections.abc import Sequence
from datetime import date
from pathlib import Path

from openpyxl import Workbook

from .models import AdRecord
from .utils import safe_filename

log = logging.getLogger(__name__)

COLUMNS: tuple[str, ...] = (
    "link",
    "identifier",
    "address",
    "description",
    "floor",
    "rooms",
    "area",
    "price",
    "structure",
)

_SHEET_BAD_CHARS = re.compile(r"[\[\]:*?/\\]")


def sheet_title(topic: str) -> str:
    """Excel sheet names: max 31 chars, none of []:*?/\\."""
    return _SHEET_BAD_CHARS.sub("_", topic)[:31] or "Sheet"


def export_path(export_dir: str | Path, topic: str, day: date | None = None) -> Path:
    day = day or date.today()
    return Path(export_dir) / f"{safe_filename(topic)}_{day.isoformat()}.xlsx"


def write_workbook(
    records: Sequence[AdRecord],
    topic: str,
    export_dir: str | Path,
    *,
    day: date | None = None,
) -> Path:
    """
    Write new records to <export_dir>/<topic>_<YYYY-MM-DD>.xlsx (one sheet per
    topic). A second run on the same day overwrites the file.
    """
    path = export_path(export_dir, topic, day)
    path.parent.mkdir(parents=True, exist_ok=True)

    wb = Workbook()
    ws = wb.active
    ws.title = sheet_title(topic)
    ws.append(list(COLUMNS))
    for ad in records:
        row = ad.as_row()
        ws.append([row[c] for c in COLUMNS])

    wb.save(path)
    log.info("Saved %d ads for topic %s to %s", len(records), topic, path)
    return path
