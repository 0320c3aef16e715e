"""
errors.py — Exception types raised across the package.

ExternalServiceError never escapes the extractor, matcher or orchestrator;
those catch it and fall back to an empty extraction or "no match".
NotFound and InvalidInput are raised to whoever mutates the catalog.
"""


class SORQuotationError(Exception):
    """Base class for errors raised by sor_quotation."""


class ExternalServiceError(SORQuotationError, RuntimeError):
    """The LLM could not be loaded, failed, or returned unparseable output."""


class NotFound(SORQuotationError, KeyError):
    """A catalog operation referenced a record id that does not exist."""

    def __init__(self, record_id: str):
        super().__init__(record_id)
        self.record_id = record_id

    def __str__(self) -> str:
        return f"Rate record not found: {self.record_id}"


class InvalidInput(SORQuotationError, ValueError):
    """A catalog write was rejected because its fields failed validation."""
