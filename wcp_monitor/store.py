"""JSON persistence layer for known products."""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from .config import STORE_PATH
from .errors import PersistenceError
from .scraper import ProductRecord

logger = logging.getLogger(__name__)


class ProductStore:
    """Durable set of known products keyed by name.

    The whole set lives in one human-readable JSON array. Writes go to a
    temp file in the same directory and replace the store in one rename,
    so a killed process leaves either the old or the new document.
    """

    def __init__(self, path: Optional[str] = None):
        self.path = Path(path if path is not None else STORE_PATH)

    def load(self) -> Dict[str, ProductRecord]:
        """Fetch all products, keyed by name. A missing file is an empty store."""
        if not self.path.exists():
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            raise PersistenceError(f"Cannot read store {self.path}: {e}") from e

        if not isinstance(data, list):
            raise PersistenceError(f"Store {self.path} is not a JSON array")

        result: dict[str, ProductRecord] = {}
        for entry in data:
            if not isinstance(entry, dict):
                logger.warning("Ignoring malformed store entry: %r", entry)
                continue
            try:
                record = ProductRecord.from_dict(entry)
            except ValueError:
                logger.warning("Ignoring store entry without a name: %r", entry)
                continue
            if record.name in result:
                logger.warning("Duplicate store entry for %r; keeping the first", record.name)
                continue
            result[record.name] = record
        return result

    def save(self, records: Iterable[ProductRecord]) -> None:
        """Replace the persisted set with `records` (the complete set, not a delta)."""
        rows: list[dict] = []
        seen: set[str] = set()
        for r in records:
            if r.name in seen:
                continue
            seen.add(r.name)
            rows.append(r.to_dict())

        tmp_path = None
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(
                dir=self.path.parent, prefix=".tmp_", suffix=".json"
            )
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(rows, f, indent=2, ensure_ascii=False)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.path)
        except OSError as e:
            if tmp_path and os.path.exists(tmp_path):
                try:
                    os.unlink(tmp_path)
                except OSError:
                    logger.debug("Could not remove temp file %s", tmp_path, exc_info=True)
            raise PersistenceError(f"Cannot write store {self.path}: {e}") from e

    def append(self, records: Iterable[ProductRecord]) -> List[ProductRecord]:
        """Add records whose names are not stored yet. Returns the ones added."""
        known = self.load()
        added: list[ProductRecord] = []
        for r in records:
            if r.name not in known:
                known[r.name] = r
                added.append(r)
        if added:
            self.save(known.values())
        return added

    def has(self, name: str) -> bool:
        return name in self.load()


__all__ = ["ProductStore"]
