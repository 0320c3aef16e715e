"""
export.py — CSV and JSON output for the catalog and quotations.

The CSV files are meant to be opened straight in Excel: UTF-8 with a BOM
(otherwise Excel mangles ₹ and non-ASCII item names), every cell quoted,
CRLF line endings.
"""

from __future__ import annotations

import csv
import logging
from pathlib import Path
from typing import Any, Dict, Iterable

import pandas as pd

from sor_quotation.quotation import line_amount, summarize
from sor_quotation.schemas import RateRecord, TenderItem

logger = logging.getLogger(__name__)

CATALOG_COLUMNS = ["Item Name", "Unit", "Rate", "Source", "Scope of Work"]
QUOTATION_COLUMNS = [
    "Item Name",
    "Quantity",
    "Requested Scope",
    "Estimated Rate",
    "Matched Item",
    "Unit",
    "Rate",
    "Amount",
    "Status",
]


def catalog_frame(records: Iterable[RateRecord]) -> pd.DataFrame:
    rows = [
        [r.name, r.unit, r.rate, r.source, r.scope_of_work]
        for r in records
    ]
    return pd.DataFrame(rows, columns=CATALOG_COLUMNS)


def quotation_frame(items: Iterable[TenderItem]) -> pd.DataFrame:
    items = list(items)
    rows = []
    for item in items:
        matched = item.matched_rate
        rows.append([
            item.name,
            item.quantity,
            item.requested_scope,
            item.estimated_rate,
            matched.name if matched else None,
            matched.unit if matched else None,
            matched.rate if matched else None,
            line_amount(item),
            item.status,
        ])
    total = summarize(items).grand_total
    rows.append(["GRAND TOTAL", None, None, None, None, None, None, total, None])
    return pd.DataFrame(rows, columns=QUOTATION_COLUMNS)


def catalog_to_csv(records: Iterable[RateRecord], path) -> Path:
    return _write_csv(catalog_frame(records), path)


def quotation_to_csv(items: Iterable[TenderItem], path) -> Path:
    return _write_csv(quotation_frame(items), path)


def quotation_to_json(items: Iterable[TenderItem]) -> Dict[str, Any]:
    return summarize(items).model_dump(mode="json")


def _write_csv(frame: pd.DataFrame, path) -> Path:
    out = Path(path)
    out.parent.mkdir(parents=True, exist_ok=True)
    frame.to_csv(
        out,
        index=False,
        encoding="utf-8-sig",
        quoting=csv.QUOTE_ALL,
        lineterminator="\r\n",
    )
    logger.info("Wrote %d rows to %s", len(frame), out)
    return out
