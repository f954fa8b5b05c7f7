from __future__ import annotations

import json
import os
from collections.abc import Iterable
from pathlib import Path

from . import logging_bridge
from .models import AdRecord
from .utils import safe_filename

# ---- Exceptions -------------------------------------------------------------


class StateCorruption(Exception):
    """Persisted seen-set could not be parsed. Recovered inside the store, never raised out."""


class PersistenceFailure(Exception):
    """The state directory or file could not be read, created or written."""


# ---- Public API -------------------------------------------------------------


class SeenSetStore:
    """
    Durable per-topic set of already-reported ad identifiers.

    Each topic owns one JSON array at <data_dir>/<topic>.json. A run does
    load -> diff -> persist exactly once per topic; callers must not reconcile
    the same topic concurrently.

    missing_id_policy:
      - "bucket":     "" is stored like any identifier, so id-less ads dedupe
                      against each other (compatible with existing state files).
      - "always_new": id-less ads are always reported and never stored.
    """

    def __init__(self, data_dir: str | os.PathLike[str], *, missing_id_policy: str = "bucket") -> None:
        self.data_dir = Path(data_dir)
        self.missing_id_policy = missing_id_policy

    def path_for(self, topic: str) -> Path:
        return self.data_dir / f"{safe_filename(topic)}.json"

    def load(self, topic: str) -> list[str]:
        """
        Return the persisted identifiers in insertion order.

        - Missing file: create "[]" (and the directory) and return [].
        - Unparseable file: copy the raw bytes to <path>.backup, return [].
        - Any other OS error: PersistenceFailure.
        """
        path = self.path_for(topic)
        try:
            if not path.exists():
                _ensure_dir(path)
                path.write_text("[]", encoding="utf-8")
                logging_bridge.activity({
                    "component": "listing_watch.store",
                    "op": "state_created",
                    "topic": topic,
                    "path": str(path),
                })
                return []
            raw = path.read_bytes()
        except OSError as e:
            logging_bridge.error({
                "component": "listing_watch.store",
                "op": "load",
                "topic": topic,
                "path": str(path),
                "error": repr(e),
            })
            raise PersistenceFailure(f"Could not read or create {path}") from e

        try:
            ids = _parse_state(raw)
        except StateCorruption as e:
            self._backup_corrupt(topic, path, raw, e)
            return []

        logging_bridge.activity({
            "component": "listing_watch.store",
            "op": "state_loaded",
            "topic": topic,
            "count": len(ids),
        })
        return ids

    def reconcile(self, topic: str, candidates: Iterable[AdRecord]) -> list[AdRecord]:
        """
        Return candidates whose identifier is not yet in the topic's seen-set,
        in candidate order, and persist the union when there is at least one.
        """
        seen_ids = self.load(topic)
        seen = set(seen_ids)

        new_items: list[AdRecord] = []
        added: list[str] = []
        for ad in candidates:
            ident = ad.identifier
            if ident == "" and self.missing_id_policy == "always_new":
                new_items.append(ad)
                continue
            if ident in seen:
                continue
            seen.add(ident)
            added.append(ident)
            new_items.append(ad)

        logging_bridge.activity({
            "component": "listing_watch.store",
            "op": "reconcile",
            "topic": topic,
            "known": len(seen_ids),
            "new": len(new_items),
        })

        if added:
            self._write(topic, seen_ids + added)
        return new_items

    # ---- internals ----------------------------------------------------------

    def _write(self, topic: str, ids: list[str]) -> None:
        path = self.path_for(topic)
        tmp = path.with_name(path.name + ".tmp")
        data = json.dumps(ids, ensure_ascii=False, indent=2)
        try:
            _ensure_dir(path)
            tmp.write_text(data, encoding="utf-8")
            os.replace(tmp, path)
        except OSError as e:
            logging_bridge.error({
                "component": "listing_watch.store",
                "op": "write",
                "topic": topic,
                "path": str(path),
                "error": repr(e),
            })
            raise PersistenceFailure(f"Could not write {path}") from e

    def _backup_corrupt(self, topic: str, path: Path, raw: bytes, err: StateCorruption) -> None:
        backup = path.with_name(path.name + ".backup")
        try:
            backup.write_bytes(raw)
        except OSError as e:
            raise PersistenceFailure(f"Could not back up corrupt state to {backup}") from e
        logging_bridge.error({
            "component": "listing_watch.store",
            "op": "state_corrupt",
            "topic": topic,
            "path": str(path),
            "backup": str(backup),
            "error": str(err),
        })


# ---- Internal utilities -----------------------------------------------------


def _ensure_dir(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)


def _parse_state(raw: bytes) -> list[str]:
    try:
        data = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise StateCorruption(f"unparseable state: {e}") from e
    if not isinstance(data, list) or not all(isinstance(x, str) for x in data):
        raise StateCorruption("state must be a JSON array of strings")
    # dict.fromkeys keeps first occurrence order
    return list(dict.fromkeys(data))
