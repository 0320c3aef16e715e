"""
orchestrator.py — Tender text in, priced tender items out.

The build runs in three stages:

  [1/3] Snapshot the catalog (taken once; edits made while the build is
        running do not affect it)
  [2/3] Extract tender lines from the raw text
  [3/3] Resolve a catalog match per line and assign its status

Status rules (derive_status):
  no record found                              -> "no-match"
  record name == requested name (ignoring case) -> "matched"
  any other record                             -> "review"

"review" is the trust boundary. The matcher is a non-deterministic model,
so a match on a different name is only a suggestion until a person has
checked the scopes line up.

Extraction and matching are injected (Extractor / Matcher protocols).
Extractor rows may be TenderLineRequest models or plain mappings; rows
that do not validate are dropped.
Whatever they do, raise included, the build completes: a failed
extraction is an empty quotation and a failed match is a "no-match"
line. Lines are resolved on a bounded thread pool, but the output is
always in extraction order.
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Iterable, List, Optional, Sequence, Union

from pydantic import ValidationError

from sor_quotation.catalog import RateCatalog, normalize_name
from sor_quotation.config import MatchingConfig, config
from sor_quotation.extraction import Extractor, LLMExtractor
from sor_quotation.matching import LLMMatcher, Matcher
from sor_quotation.schemas import (
    CatalogCandidate,
    MatchStatus,
    RateRecord,
    TenderItem,
    TenderLineRequest,
)

logger = logging.getLogger(__name__)

CatalogLike = Union[RateCatalog, Iterable[RateRecord]]


def derive_status(matched: Optional[RateRecord], requested_name: str) -> MatchStatus:
    """Pure status rule. No I/O, no model calls."""
    if matched is None:
        return "no-match"
    if normalize_name(matched.name) == normalize_name(requested_name):
        return "matched"
    return "review"


def snapshot_catalog(catalog: CatalogLike) -> Sequence[RateRecord]:
    if isinstance(catalog, RateCatalog):
        return catalog.snapshot()
    return tuple(catalog)


class QuotationBuilder:
    """
    Builds a priced tender item list from raw tender text.

    Usage:
        builder = QuotationBuilder()            # LLM extractor + matcher
        items = builder.build(pasted_text, catalog)

        builder = QuotationBuilder(extractor=FakeExtractor(), matcher=FakeMatcher())
    """

    def __init__(
        self,
        extractor: Optional[Extractor] = None,
        matcher: Optional[Matcher] = None,
        settings: Optional[MatchingConfig] = None,
    ):
        self.extractor = extractor if extractor is not None else LLMExtractor()
        self.matcher = matcher if matcher is not None else LLMMatcher()
        self.settings = settings or config.matching

    def build(self, raw_text: str, catalog: CatalogLike) -> List[TenderItem]:
        if not raw_text or not raw_text.strip():
            logger.info("Empty tender text — nothing to price.")
            return []

        overall_start = time.time()

        # ── Stage 1: Catalog snapshot ────────────────────────────
        records = snapshot_catalog(catalog)
        by_id = {r.id: r for r in records}
        candidates = [CatalogCandidate(id=r.id, name=r.name) for r in records]
        logger.info("[1/3] Catalog snapshot: %d rate records", len(records))

        # ── Stage 2: Extraction ──────────────────────────────────
        t0 = time.time()
        lines = self._extract(raw_text)
        logger.info("[2/3] Extracted %d tender lines in %.1fs", len(lines), time.time() - t0)
        if not lines:
            return []

        # ── Stage 3: Match resolution ────────────────────────────
        t0 = time.time()

        def resolve(line: TenderLineRequest) -> TenderItem:
            return self._resolve(line, candidates, by_id)

        workers = min(self.settings.max_workers, len(lines))
        if workers <= 1 or not candidates:
            items = [resolve(line) for line in lines]
        else:
            # map() yields in submission order, whatever order lines finish in
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="sor-match") as pool:
                items = list(pool.map(resolve, lines))

        counts = {s: sum(1 for i in items if i.status == s) for s in ("matched", "review", "no-match")}
        logger.info(
            "[3/3] Resolved %d lines in %.1fs (%d matched, %d review, %d no-match)",
            len(items), time.time() - t0,
            counts["matched"], counts["review"], counts["no-match"],
        )
        logger.info("Quotation built in %.1fs", time.time() - overall_start)
        return items

    def _extract(self, raw_text: str) -> List[TenderLineRequest]:
        try:
            extracted = list(self.extractor.extract(raw_text) or [])
        except Exception as exc:
            logger.error("Extractor failed (%s); treating as zero items.", exc)
            return []

        lines: List[TenderLineRequest] = []
        for index, entry in enumerate(extracted):
            if isinstance(entry, TenderLineRequest):
                lines.append(entry)
                continue
            try:
                lines.append(TenderLineRequest.model_validate(entry))
            except ValidationError as exc:
                logger.warning(
                    "Dropping extracted line %d (%s): %s",
                    index, type(entry).__name__, exc.errors()[0]["msg"]
                )
        return lines

    def _resolve(
        self,
        line: TenderLineRequest,
        candidates: Sequence[CatalogCandidate],
        by_id: dict,
    ) -> TenderItem:
        matched_id: Optional[str] = None
        if candidates:
            try:
                matched_id = self.matcher.find_best_match(
                    line.name, line.requested_scope, candidates
                )
            except Exception as exc:
                logger.warning("Matcher failed for '%s' (%s); no match.", line.name, exc)
                matched_id = None

        if matched_id is not None and not isinstance(matched_id, str):
            logger.warning("Matcher returned %r for '%s'; no match.", matched_id, line.name)
            matched_id = None

        matched = by_id.get(matched_id) if matched_id is not None else None
        if matched_id is not None and matched is None:
            logger.warning("Matcher returned stale id %r for '%s'", matched_id, line.name)

        return TenderItem(
            name=line.name,
            quantity=line.quantity,
            requested_scope=line.requested_scope,
            estimated_rate=line.estimated_rate,
            matched_rate=matched,
            status=derive_status(matched, line.name),
        )


def build_quotation(
    raw_text: str,
    catalog: CatalogLike,
    extractor: Optional[Extractor] = None,
    matcher: Optional[Matcher] = None,
) -> List[TenderItem]:
    """One-shot helper around QuotationBuilder."""
    return QuotationBuilder(extractor=extractor, matcher=matcher).build(raw_text, catalog)
