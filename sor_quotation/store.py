"""
store.py — Load/save boundary for the rate catalog.

The catalog only needs two operations from its storage: load() and
save(records). JsonCatalogStore keeps the records as one JSON array on
disk, in insertion order. The format is the same one the old browser app
exported (camel-case keys are accepted on load), so existing exports can
be dropped in as the catalog file.

load() never fails: a missing, unreadable or corrupt file is an empty
catalog, and individual bad entries are skipped. Before that happens the
file is set aside as <name>.corrupt (moved, or copied when some entries
survived), so the next save() cannot destroy what was there. save()
writes to a temp file and renames it, so a crash mid-write leaves the
previous catalog intact.
"""

from __future__ import annotations

import json
import logging
import os
import shutil
import tempfile
from pathlib import Path
from typing import Iterable, List, Optional, Protocol

from pydantic import ValidationError

from sor_quotation.schemas import RateRecord

logger = logging.getLogger(__name__)


class CatalogStore(Protocol):
    def load(self) -> List[RateRecord]:
        ...

    def save(self, records: Iterable[RateRecord]) -> None:
        ...


class JsonCatalogStore:
    """Catalog persisted as a JSON array file."""

    def __init__(self, path):
        self.path = Path(path)

    def load(self) -> List[RateRecord]:
        if not self.path.exists():
            logger.info("No catalog at %s yet, starting empty.", self.path)
            return []

        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as exc:
            logger.error("Failed to read catalog %s: %s. Starting empty.", self.path, exc)
            self.quarantine()
            return []

        if not isinstance(data, list):
            logger.error(
                "Catalog %s holds a %s, expected a list. Starting empty.",
                self.path, type(data).__name__
            )
            self.quarantine()
            return []

        records = _parse_records(data)
        if len(records) < len(data):
            self.quarantine(keep_original=True)
        logger.info("Loaded %d rate records from %s", len(records), self.path)
        return records

    @property
    def quarantine_path(self) -> Path:
        return self.path.with_name(self.path.name + ".corrupt")

    def quarantine(self, keep_original: bool = False) -> Optional[Path]:
        """
        Set the catalog file aside as <name>.corrupt so the next save()
        cannot destroy it. An existing .corrupt file is never overwritten;
        later ones get .corrupt.1, .corrupt.2 and so on. With keep_original
        the file is copied instead of moved. Returns the path written, or
        None if nothing could be set aside.
        """
        if not self.path.exists():
            return None
        target = self.quarantine_path
        n = 1
        while target.exists():
            target = self.quarantine_path.with_name(f"{self.quarantine_path.name}.{n}")
            n += 1
        try:
            if keep_original:
                shutil.copyfile(self.path, target)
            else:
                os.replace(self.path, target)
        except OSError as exc:
            logger.error("Could not set %s aside as %s: %s", self.path, target, exc)
            return None
        logger.warning("Catalog %s kept as %s for recovery", self.path, target)
        return target

    def save(self, records: Iterable[RateRecord]) -> None:
        payload = [r.model_dump(mode="json") for r in records]
        self.path.parent.mkdir(parents=True, exist_ok=True)

        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{self.path.name}.", suffix=".tmp", dir=str(self.path.parent)
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(payload, f, indent=2, ensure_ascii=False)
            os.replace(tmp_name, self.path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise
        logger.debug("Saved %d rate records to %s", len(payload), self.path)


class MemoryCatalogStore:
    """In-process store. Used by tests and by the API when no path is set."""

    def __init__(self, records: Optional[Iterable[RateRecord]] = None):
        self._records: List[RateRecord] = list(records or [])
        self.save_count = 0

    def load(self) -> List[RateRecord]:
        return list(self._records)

    def save(self, records: Iterable[RateRecord]) -> None:
        self._records = list(records)
        self.save_count += 1


def _parse_records(data: list) -> List[RateRecord]:
    records: List[RateRecord] = []
    seen_ids = set()
    for index, entry in enumerate(data):
        if not isinstance(entry, dict):
            logger.warning("Skipping catalog entry %d: not an object", index)
            continue
        try:
            record = RateRecord.model_validate(entry)
        except ValidationError as exc:
            logger.warning("Skipping catalog entry %d: %s", index, exc.errors()[0]["msg"])
            continue
        if record.id in seen_ids:
            logger.warning("Skipping catalog entry %d: duplicate id %s", index, record.id)
            continue
        seen_ids.add(record.id)
        records.append(record)
    return records
