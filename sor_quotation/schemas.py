"""
schemas.py — Pydantic v2 models for rate records and tender items.

These models are the contract between the catalog, the LLM-backed
extractor/matcher and the orchestrator. LLM output is messy, so the
tender-side models coerce aggressively: quantity falls back to 1, an
unreadable estimated rate becomes None, null strings become "". The
catalog-side models are strict about the two things that matter for
pricing: a record needs a name and a finite, non-negative rate.

Camel-case keys (scopeOfWork, requestedScope, estimatedRate, timestamp)
are accepted on input because that is what the LLM prompts ask for and
what the old browser app stored in its JSON export.
"""

from __future__ import annotations

import math
import uuid
from typing import Any, List, Literal, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

MatchStatus = Literal["pending", "matched", "review", "no-match"]


def new_id() -> str:
    return uuid.uuid4().hex


def coerce_number(value: Any) -> Optional[float]:
    """Best-effort float conversion. Returns None for anything unusable."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        cleaned = value.strip().replace(",", "")
        if not cleaned:
            return None
        try:
            number = float(cleaned)
        except ValueError:
            return None
    else:
        return None
    return number if math.isfinite(number) else None


def _blank_if_none(value: Any) -> Any:
    return "" if value is None else value


class RateRecordInput(BaseModel):
    """The editable (non-identity) fields of a Schedule of Rates entry."""
    model_config = ConfigDict(extra="ignore")

    name: str
    unit: str = Field(default="")
    rate: float = Field(..., ge=0, allow_inf_nan=False)
    scope_of_work: str = Field(
        default="",
        validation_alias=AliasChoices("scope_of_work", "scopeOfWork"),
    )
    source: str = Field(default="")

    @field_validator("name")
    @classmethod
    def name_must_not_be_empty(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("name cannot be empty or whitespace")
        return v

    @field_validator("unit", "scope_of_work", "source", mode="before")
    @classmethod
    def none_to_blank(cls, v: Any) -> Any:
        return _blank_if_none(v)

    @field_validator("rate", mode="before")
    @classmethod
    def strip_thousands_separators(cls, v: Any) -> Any:
        # "1,250.00" shows up constantly in pasted SOR books
        if isinstance(v, str):
            return v.strip().replace(",", "")
        return v


class RateRecord(RateRecordInput):
    """
    A catalog entry. Frozen: edits replace the whole record, so any
    TenderItem holding a reference keeps the values it was priced with.
    """
    model_config = ConfigDict(frozen=True)

    id: str
    created_at: int = Field(
        ...,
        validation_alias=AliasChoices("created_at", "createdAt", "timestamp"),
    )

    def editable_fields(self) -> RateRecordInput:
        return RateRecordInput(
            name=self.name,
            unit=self.unit,
            rate=self.rate,
            scope_of_work=self.scope_of_work,
            source=self.source,
        )


class CatalogCandidate(BaseModel):
    """The reduced (id, name) view of a record that the matcher sees."""
    id: str
    name: str


class TenderLineRequest(BaseModel):
    """One line pulled out of a tender document, before pricing."""
    model_config = ConfigDict(extra="ignore")

    name: str
    quantity: float = Field(default=1.0)
    requested_scope: str = Field(
        default="",
        validation_alias=AliasChoices("requested_scope", "requestedScope", "scope"),
    )
    estimated_rate: Optional[float] = Field(
        default=None,
        validation_alias=AliasChoices("estimated_rate", "estimatedRate"),
    )

    @field_validator("name")
    @classmethod
    def name_must_not_be_empty(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("tender item name cannot be empty or whitespace")
        return v

    @field_validator("quantity", mode="before")
    @classmethod
    def quantity_defaults_to_one(cls, v: Any) -> float:
        number = coerce_number(v)
        if number is None or number <= 0:
            return 1.0
        return number

    @field_validator("requested_scope", mode="before")
    @classmethod
    def none_to_blank(cls, v: Any) -> Any:
        return _blank_if_none(v)

    @field_validator("estimated_rate", mode="before")
    @classmethod
    def unreadable_rate_is_none(cls, v: Any) -> Optional[float]:
        return coerce_number(v)


class TenderItem(TenderLineRequest):
    """A tender line after match resolution."""
    id: str = Field(default_factory=new_id)
    matched_rate: Optional[RateRecord] = None
    status: MatchStatus = "pending"


class ScopeCheck(BaseModel):
    """Verdict on whether an existing scope of work covers a requested one."""
    model_config = ConfigDict(extra="ignore")

    is_match: bool = Field(
        default=False, validation_alias=AliasChoices("is_match", "isMatch")
    )
    confidence: float = Field(default=0.0)
    reason: str = Field(default="Unknown")

    @field_validator("confidence", mode="before")
    @classmethod
    def clamp_confidence(cls, v: Any) -> float:
        number = coerce_number(v)
        if number is None:
            return 0.0
        return min(1.0, max(0.0, number))

    @field_validator("reason", mode="before")
    @classmethod
    def reason_defaults_to_unknown(cls, v: Any) -> Any:
        return "Unknown" if v is None else v


class QuotationSummary(BaseModel):
    """Read-only projection over a list of resolved tender items."""
    items: List[TenderItem] = Field(default_factory=list)
    lines: List[float] = Field(default_factory=list)
    grand_total: float = 0.0
    matched_count: int = 0
    review_count: int = 0
    no_match_count: int = 0
