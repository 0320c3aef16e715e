"""
extraction.py — Turning pasted tender / SOR text into structured items.

Users paste whatever they have: a BOQ copied out of Excel, a scanned-then-
OCR'd schedule, a paragraph from an email. We hand that text to the LLM
and ask for a JSON array back. Two extractions live here:

  extract(text)                  -> tender lines to be priced
  extract_catalog_items(text)    -> SOR records for bulk import

Failure contract: both methods return [] on ANY failure (model missing,
retries exhausted, output not JSON, output JSON of the wrong shape).
An empty extraction is a normal outcome the rest of the system already
handles, so no exception leaves this module.

Text longer than max_input_chars is split at line ends into chunks, one
LLM call each; rows come back in text order. A failed chunk fails the
whole extraction, so a quotation never silently misses its tail.

Each returned entry is validated on its own. One bad row (no name, rate
"TBD") is dropped with a warning; the rest of the rows survive.
"""

from __future__ import annotations

import logging
from typing import Any, List, Optional, Protocol, Type, TypeVar

from pydantic import BaseModel, ValidationError

from sor_quotation.config import ExtractionConfig, config
from sor_quotation.errors import ExternalServiceError
from sor_quotation.llm import LLMClient, get_default_client
from sor_quotation.schemas import RateRecordInput, TenderLineRequest

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


# ── Prompt Templates ──────────────────────────────────────────────────────
# The double-brace {{}} is str.format escaping, not a typo.

TENDER_ITEMS_PROMPT = """You extract line items from tender documents and bills of quantities.
The text below might be a copy-paste from a tender document or spreadsheet.

RULES:
1. Extract ONLY items present in the text — do NOT invent items.
2. For every item identify: the item name, the quantity, the scope of work description,
   and any estimated rate or unit rate mentioned in the text.
3. If the quantity is missing, use 1.
4. If no rate is mentioned for an item, use null for estimatedRate.
5. Keep the items in the order they appear in the text.

TEXT:
{text}

OUTPUT FORMAT (respond ONLY with a valid JSON array, no markdown fences):
[
  {{
    "name": "...",
    "quantity": <number>,
    "requestedScope": "...",
    "estimatedRate": <number> or null
  }}
]
"""

CATALOG_ITEMS_PROMPT = """You extract Schedule of Rates (SOR) data from raw text.
The text might contain item names, units (m3, sqm, kg, etc.), rates (numerical values),
scope of work descriptions, and source/reference information.

RULES:
1. Extract ONLY items present in the text — do NOT invent items or rates.
2. The rate is the price per unit, as a number without currency symbols.
3. If a piece of information like the source is missing, use an empty string.

TEXT:
{text}

OUTPUT FORMAT (respond ONLY with a valid JSON array, no markdown fences):
[
  {{
    "name": "...",
    "unit": "...",
    "rate": <number>,
    "scopeOfWork": "...",
    "source": "..."
  }}
]
"""


class Extractor(Protocol):
    """Anything that can turn raw text into tender lines and SOR records."""

    def extract(self, text: str) -> List[TenderLineRequest]:
        ...

    def extract_catalog_items(self, text: str) -> List[RateRecordInput]:
        ...


class LLMExtractor:
    """
    Prompt-based extractor on top of the shared LLM client.

    Usage:
        extractor = LLMExtractor()
        lines = extractor.extract(pasted_text)
    """

    def __init__(
        self,
        llm: Optional[LLMClient] = None,
        settings: Optional[ExtractionConfig] = None,
    ):
        self._llm = llm
        self.settings = settings or config.extraction

    @property
    def llm(self) -> LLMClient:
        if self._llm is None:
            self._llm = get_default_client()
        return self._llm

    def extract(self, text: str) -> List[TenderLineRequest]:
        """Extract tender lines to be priced. Never raises."""
        return self._run(text, TENDER_ITEMS_PROMPT, TenderLineRequest, "tender items")

    def extract_catalog_items(self, text: str) -> List[RateRecordInput]:
        """Extract SOR records for bulk import. Never raises."""
        return self._run(text, CATALOG_ITEMS_PROMPT, RateRecordInput, "catalog items")

    def _run(
        self,
        text: str,
        template: str,
        model: Type[ModelT],
        label: str,
    ) -> List[ModelT]:
        if not text or not text.strip():
            return []

        limit = self.settings.max_input_chars
        chunks = split_for_extraction(text.strip(), limit)
        if len(chunks) > 1:
            logger.info(
                "Input for %s is %d chars; extracting in %d chunks of <= %d.",
                label, len(text), len(chunks), limit
            )

        rows: List[Any] = []
        for index, chunk in enumerate(chunks, start=1):
            chunk_rows = self._extract_rows(template, chunk, label)
            if chunk_rows is None:
                logger.error(
                    "Chunk %d/%d of %s failed; returning none.", index, len(chunks), label
                )
                return []
            rows.extend(chunk_rows)

        items = _validate_rows(rows, model, label)
        logger.info("Extracted %d/%d %s", len(items), len(rows), label)
        return items

    def _extract_rows(self, template: str, text: str, label: str) -> Optional[List[Any]]:
        try:
            payload = self.llm.generate_json(template.format(text=text))
        except ExternalServiceError as exc:
            logger.error("Extraction of %s failed: %s", label, exc)
            return None
        except Exception as exc:
            logger.exception("Unexpected error extracting %s: %s", label, exc)
            return None

        rows = _as_rows(payload)
        if rows is None:
            logger.error(
                "LLM returned %s for %s, expected a list.", type(payload).__name__, label
            )
        return rows


def split_for_extraction(text: str, limit: int) -> List[str]:
    """
    Split text into pieces of at most `limit` chars, in order.

    Breaks fall on line ends, since a BOQ line is one item. A single line
    longer than `limit` is cut at `limit`.
    """
    chunks: List[str] = []
    current = ""
    for line in text.splitlines(keepends=True):
        while len(line) > limit:
            if current:
                chunks.append(current)
                current = ""
            chunks.append(line[:limit])
            line = line[limit:]
        if len(current) + len(line) > limit:
            chunks.append(current)
            current = ""
        current += line
    if current:
        chunks.append(current)
    return [c for c in chunks if c.strip()]


def _as_rows(payload: Any) -> Optional[List[Any]]:
    """Accept a bare array, or an object wrapping one under 'items'."""
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict):
        for key in ("items", "data", "results"):
            if isinstance(payload.get(key), list):
                return payload[key]
    return None


def _validate_rows(rows: List[Any], model: Type[ModelT], label: str) -> List[ModelT]:
    validated: List[ModelT] = []
    for index, row in enumerate(rows):
        if not isinstance(row, dict):
            logger.warning("Dropping %s row %d: not an object (%r)", label, index, row)
            continue
        try:
            validated.append(model.model_validate(row))
        except ValidationError as exc:
            logger.warning(
                "Dropping %s row %d (%s): %s",
                label, index, row.get("name", "?"), exc.errors()[0]["msg"]
            )
    return validated
