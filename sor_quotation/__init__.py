"""
SOR Quotation — Schedule of Rates database and tender auto-pricing

Keeps a catalog of Schedule of Rates (SOR) line items and turns raw tender
text into a priced quotation by extracting line items with an LLM and
matching each one against the catalog.
"""

__version__ = "1.0.0"
__author__ = "TenderExtractPro"
