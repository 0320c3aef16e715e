"""
matching.py — Semantic matching of a tender line against the rate catalog.

The matcher sees the query item's name and scope, and the catalog reduced
to (id, name) pairs. Catalog scopes are NOT sent, so the prompt stays
small on a catalog of a few hundred records.

Failure contract: every error, refusal or unparseable answer is "no
match" (None). The orchestrator turns that into a "no-match" line for the
estimator to price by hand.

check_scope() is the second opinion estimators use on "review" lines:
does the existing record's scope actually cover what the tender asks for?
"""

from __future__ import annotations

import logging
from typing import Any, Optional, Protocol, Sequence

from pydantic import ValidationError

from sor_quotation.errors import ExternalServiceError
from sor_quotation.llm import LLMClient, get_default_client
from sor_quotation.schemas import CatalogCandidate, ScopeCheck

logger = logging.getLogger(__name__)

_NULL_IDS = {"", "null", "none", "no match", "n/a"}


BEST_MATCH_PROMPT = """You match tender items against a Schedule of Rates database.

Tender item: "{name}"
Requested scope: "{scope}"

Database items:
{catalog}

Identify which database item is the most similar to the tender item or a functional equivalent.
If there is a reasonably close match (even if not exact), return the ID of that item.
If NO items are even remotely similar, return null.

OUTPUT FORMAT (respond ONLY with valid JSON, no markdown fences):
{{"matchedId": "<ID>" or null, "reason": "..."}}
"""

SCOPE_CHECK_PROMPT = """Compare these two descriptions of 'Scope of Work' for a construction or technical tender item.
Determine if they are functionally equivalent or if the existing scope covers the requested requirements.

Requested Scope: "{requested}"
Existing Scope in Database: "{existing}"

OUTPUT FORMAT (respond ONLY with valid JSON, no markdown fences):
{{"isMatch": true | false, "confidence": <number between 0 and 1>, "reason": "..."}}
"""

SCOPE_CHECK_ERROR = ScopeCheck(is_match=False, confidence=0.0, reason="Error validating scope.")


class Matcher(Protocol):
    """Anything that can pick the best catalog id for a tender line."""

    def find_best_match(
        self,
        name: str,
        scope: str,
        candidates: Sequence[CatalogCandidate],
    ) -> Optional[str]:
        ...


class LLMMatcher:
    """
    Prompt-based matcher on top of the shared LLM client.

    Usage:
        matcher = LLMMatcher()
        record_id = matcher.find_best_match("Pipe 25mm", "GI pipe", catalog.candidates())
    """

    def __init__(self, llm: Optional[LLMClient] = None):
        self._llm = llm

    @property
    def llm(self) -> LLMClient:
        if self._llm is None:
            self._llm = get_default_client()
        return self._llm

    def find_best_match(
        self,
        name: str,
        scope: str,
        candidates: Sequence[CatalogCandidate],
    ) -> Optional[str]:
        """Return the id of the best catalog candidate, or None. Never raises."""
        if not candidates:
            return None

        prompt = BEST_MATCH_PROMPT.format(
            name=name,
            scope=scope or "",
            catalog=format_candidates(candidates),
        )
        try:
            payload = self.llm.generate_json(prompt)
        except ExternalServiceError as exc:
            logger.warning("Semantic matching failed for '%s': %s", name, exc)
            return None
        except Exception as exc:
            logger.exception("Unexpected error matching '%s': %s", name, exc)
            return None

        matched_id = _read_matched_id(payload)
        if matched_id is None:
            logger.debug("No match for '%s'", name)
            return None

        known_ids = {c.id for c in candidates}
        if matched_id not in known_ids:
            logger.warning(
                "Matcher returned unknown id %r for '%s'; treating as no match.",
                matched_id, name
            )
            return None
        return matched_id

    def check_scope(self, requested_scope: str, existing_scope: str) -> ScopeCheck:
        """Judge whether an existing scope covers a requested one. Never raises."""
        prompt = SCOPE_CHECK_PROMPT.format(
            requested=requested_scope or "",
            existing=existing_scope or "",
        )
        try:
            payload = self.llm.generate_json(prompt)
        except ExternalServiceError as exc:
            logger.warning("Scope check failed: %s", exc)
            return SCOPE_CHECK_ERROR
        except Exception as exc:
            logger.exception("Unexpected error in scope check: %s", exc)
            return SCOPE_CHECK_ERROR

        if not isinstance(payload, dict):
            logger.warning("Scope check returned %s, expected an object", type(payload).__name__)
            return SCOPE_CHECK_ERROR
        try:
            return ScopeCheck.model_validate(payload)
        except ValidationError as exc:
            logger.warning("Scope check output failed validation: %s", exc)
            return SCOPE_CHECK_ERROR


def format_candidates(candidates: Sequence[CatalogCandidate]) -> str:
    return "\n".join(f"- {c.name} (ID: {c.id})" for c in candidates)


def _read_matched_id(payload: Any) -> Optional[str]:
    if not isinstance(payload, dict):
        return None
    value = payload.get("matchedId", payload.get("matched_id"))
    if not isinstance(value, str):
        return None
    value = value.strip()
    if value.lower() in _NULL_IDS:
        return None
    return value
