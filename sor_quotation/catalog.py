"""
catalog.py — The Schedule of Rates catalog.

RateCatalog is the single source of truth for rates. It is an explicit
object with a load/persist lifecycle: build it from a store with
RateCatalog.load(store), mutate it, call persist() when you want the
changes on disk. Every structural mutation sets `dirty`; persist() is a
no-op when nothing changed.

Duplicate names are allowed. Several sources quoting the same
item at different rates is exactly what the benchmark flag
(lowest_rate_for) is for.

Policies:
  - remove() of an unknown id is a no-op that returns False. update() and
    get() of an unknown id raise NotFound.
  - add_many() is all-or-nothing: one invalid entry rejects the batch.
  - Records are frozen. update() swaps in a new RateRecord with the same
    id and created_at, so quotations that already reference the old
    record keep the old values.

Mutations are serialised with a re-entrant lock; readers get tuple
snapshots, so a quotation build never sees a half-applied edit.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Any, Iterable, Iterator, List, Mapping, Optional, Set, Tuple, Union

from pydantic import ValidationError

from sor_quotation.errors import InvalidInput, NotFound
from sor_quotation.schemas import CatalogCandidate, RateRecord, RateRecordInput, new_id
from sor_quotation.store import CatalogStore

logger = logging.getLogger(__name__)

RecordFields = Union[RateRecordInput, Mapping[str, Any]]


def normalize_name(name: str) -> str:
    """Key used for every case-insensitive name comparison."""
    return name.strip().lower()


def validate_fields(fields: RecordFields) -> RateRecordInput:
    """Coerce user/LLM input into RateRecordInput, or raise InvalidInput."""
    if isinstance(fields, RateRecord):
        return fields.editable_fields()
    if isinstance(fields, RateRecordInput):
        return fields
    if not isinstance(fields, Mapping):
        raise InvalidInput(f"Expected a mapping of record fields, got {type(fields).__name__}")
    try:
        return RateRecordInput.model_validate(dict(fields))
    except ValidationError as exc:
        raise InvalidInput(_describe(exc)) from exc


def _describe(exc: ValidationError) -> str:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err["loc"]) or "record"
        parts.append(f"{loc}: {err['msg']}")
    return "Invalid rate record — " + "; ".join(parts)


def _quarantine(store: CatalogStore) -> None:
    # Stores that can set bad data aside (JsonCatalogStore) do so before
    # an empty catalog gets persisted over it.
    quarantine = getattr(store, "quarantine", None)
    if callable(quarantine):
        quarantine()


class RateCatalog:
    """
    In-memory catalog of rate records, in insertion order.

    Usage:
        catalog = RateCatalog.load(JsonCatalogStore("data/sor_catalog.json"))
        record = catalog.add({"name": "Excavation", "unit": "m3", "rate": 100})
        catalog.persist()
    """

    def __init__(
        self,
        records: Optional[Iterable[RateRecord]] = None,
        store: Optional[CatalogStore] = None,
    ):
        self._lock = threading.RLock()
        self._records: List[RateRecord] = []
        self._store = store
        self._last_created_at = 0
        self.dirty = False

        for record in records or []:
            if record.id in self:
                raise InvalidInput(f"Duplicate rate record id: {record.id}")
            self._records.append(record)
            self._last_created_at = max(self._last_created_at, record.created_at)

    @classmethod
    def load(cls, store: CatalogStore) -> "RateCatalog":
        """
        Build a catalog from a store. A failing or inconsistent store means
        an empty catalog; the store's data is set aside first if it can be.
        """
        try:
            records = store.load()
        except Exception as exc:
            logger.error("Catalog store failed to load (%s); starting empty.", exc)
            _quarantine(store)
            records = []

        try:
            return cls(records, store=store)
        except InvalidInput as exc:
            logger.error("Stored catalog is inconsistent (%s); starting empty.", exc)
            _quarantine(store)
            return cls(store=store)

    def persist(self) -> bool:
        """Save to the bound store if anything changed. Returns True if saved."""
        with self._lock:
            if self._store is None or not self.dirty:
                return False
            self._store.save(tuple(self._records))
            self.dirty = False
            logger.info("Persisted %d rate records", len(self._records))
            return True

    # ── Mutations ─────────────────────────────────────────────────────────

    def add(self, fields: RecordFields) -> RateRecord:
        validated = validate_fields(fields)
        with self._lock:
            record = self._create(validated)
            self._records.append(record)
            self.dirty = True
        logger.debug("Added rate record %s (%s)", record.id, record.name)
        return record

    def add_many(self, items: Iterable[RecordFields]) -> List[RateRecord]:
        validated = [validate_fields(item) for item in items]
        with self._lock:
            created = [self._create(v) for v in validated]
            self._records.extend(created)
            if created:
                self.dirty = True
        logger.info("Bulk-imported %d rate records", len(created))
        return created

    def update(self, record_id: str, fields: RecordFields) -> RateRecord:
        validated = validate_fields(fields)
        with self._lock:
            index = self._index_of(record_id)
            if index is None:
                raise NotFound(record_id)
            old = self._records[index]
            record = RateRecord(
                id=old.id,
                created_at=old.created_at,
                **validated.model_dump(),
            )
            self._records[index] = record
            self.dirty = True
        logger.debug("Updated rate record %s", record_id)
        return record

    def remove(self, record_id: str) -> bool:
        with self._lock:
            index = self._index_of(record_id)
            if index is None:
                logger.debug("Remove of unknown rate record %s ignored", record_id)
                return False
            del self._records[index]
            self.dirty = True
        logger.debug("Removed rate record %s", record_id)
        return True

    # ── Queries ───────────────────────────────────────────────────────────

    def get(self, record_id: str) -> RateRecord:
        with self._lock:
            index = self._index_of(record_id)
            if index is None:
                raise NotFound(record_id)
            return self._records[index]

    def snapshot(self) -> Tuple[RateRecord, ...]:
        with self._lock:
            return tuple(self._records)

    def candidates(self) -> List[CatalogCandidate]:
        return [CatalogCandidate(id=r.id, name=r.name) for r in self.snapshot()]

    def find_by_name(self, name: str, case_insensitive: bool = True) -> List[RateRecord]:
        if case_insensitive:
            key = normalize_name(name)
            return [r for r in self.snapshot() if normalize_name(r.name) == key]
        return [r for r in self.snapshot() if r.name == name]

    def lowest_rate_for(self, record: RateRecord) -> bool:
        """
        True iff at least two records share this record's name
        (case-insensitive) and this record's rate is their minimum.
        Every record tied at the minimum is flagged.
        """
        peers = self.find_by_name(record.name)
        if len(peers) < 2:
            return False
        return record.rate == min(p.rate for p in peers)

    def lowest_rate_ids(self) -> Set[str]:
        """Ids of every record that lowest_rate_for() would flag."""
        groups = {}
        for record in self.snapshot():
            groups.setdefault(normalize_name(record.name), []).append(record)

        flagged: Set[str] = set()
        for peers in groups.values():
            if len(peers) < 2:
                continue
            lowest = min(p.rate for p in peers)
            flagged.update(p.id for p in peers if p.rate == lowest)
        return flagged

    def search(self, query: str = "") -> List[RateRecord]:
        """Substring search over name, scope and source; newest first."""
        needle = (query or "").strip().lower()
        hits = [
            r for r in self.snapshot()
            if not needle
            or needle in r.name.lower()
            or needle in r.scope_of_work.lower()
            or needle in r.source.lower()
        ]
        return sorted(hits, key=lambda r: r.created_at, reverse=True)

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def __iter__(self) -> Iterator[RateRecord]:
        return iter(self.snapshot())

    def __contains__(self, record_id: object) -> bool:
        with self._lock:
            return any(r.id == record_id for r in self._records)

    # ── Internals ─────────────────────────────────────────────────────────

    def _create(self, fields: RateRecordInput) -> RateRecord:
        # Strictly increasing so recency ordering has no ties inside
        # one catalog, even for a bulk import within the same millisecond.
        created_at = max(int(time.time() * 1000), self._last_created_at + 1)
        self._last_created_at = created_at
        return RateRecord(id=new_id(), created_at=created_at, **fields.model_dump())

    def _index_of(self, record_id: str) -> Optional[int]:
        for index, record in enumerate(self._records):
            if record.id == record_id:
                return index
        return None
