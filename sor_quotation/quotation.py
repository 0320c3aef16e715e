"""
quotation.py — Totals over resolved tender items.

A quotation is never stored. It is always recomputed from the tender items,
which carry their own snapshot of the matched rate. No rounding happens
here; rounding to currency is a display concern.
"""

from __future__ import annotations

import math
from typing import Dict, Iterable, List

from sor_quotation.schemas import QuotationSummary, TenderItem


def line_amount(item: TenderItem) -> float:
    rate = item.matched_rate.rate if item.matched_rate is not None else 0.0
    return item.quantity * rate


def grand_total(items: Iterable[TenderItem]) -> float:
    # fsum is exactly rounded, so the total does not depend on item order
    return math.fsum(line_amount(item) for item in items)


def matched_count(items: Iterable[TenderItem]) -> int:
    return sum(1 for item in items if item.matched_rate is not None)


def status_counts(items: Iterable[TenderItem]) -> Dict[str, int]:
    counts = {"pending": 0, "matched": 0, "review": 0, "no-match": 0}
    for item in items:
        counts[item.status] += 1
    return counts


def summarize(items: Iterable[TenderItem]) -> QuotationSummary:
    items = list(items)
    counts = status_counts(items)
    lines: List[float] = [line_amount(item) for item in items]
    return QuotationSummary(
        items=items,
        lines=lines,
        grand_total=grand_total(items),
        matched_count=matched_count(items),
        review_count=counts["review"],
        no_match_count=counts["no-match"],
    )
