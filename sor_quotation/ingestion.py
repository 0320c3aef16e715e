"""
ingestion.py — Getting raw text out of a tender file.

The quotation builder works on plain text. Most of the time that text is
pasted, but the CLI also accepts the tender file itself:

  .txt / .md / .csv  read as UTF-8
  .pdf               pdfplumber, page texts joined with blank lines
  .docx              python-docx, paragraphs then table rows ("a | b | c")

Scanned PDFs come back empty here (no OCR). The extractor then sees no
text and the quotation is empty, which is what we want the user to see.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import List

import pdfplumber

from sor_quotation.config import config

logger = logging.getLogger(__name__)

TEXT_SUFFIXES = (".txt", ".md", ".csv")


def read_document_text(file_path) -> str:
    """
    Load a tender document and return its text.

    Raises:
        FileNotFoundError: the file does not exist.
        ValueError: unsupported format or file too large.
    """
    path = Path(file_path)
    _validate_file(path)

    suffix = path.suffix.lower()
    if suffix in TEXT_SUFFIXES:
        text = path.read_text(encoding="utf-8", errors="replace")
        logger.info("Read %s (%d chars)", path.name, len(text))
        return text
    if suffix == ".pdf":
        return _read_pdf(path)
    if suffix == ".docx":
        return _read_docx(path)
    raise ValueError(f"Unsupported format: {suffix}")


def _read_pdf(path: Path) -> str:
    parts: List[str] = []
    with pdfplumber.open(str(path)) as pdf:
        total_pages = len(pdf.pages)
        for idx, page in enumerate(pdf.pages, start=1):
            text = page.extract_text() or ""
            if not text.strip():
                logger.warning("Page %d/%d of %s has no text layer", idx, total_pages, path.name)
                continue
            parts.append(text)

    logger.info("Read PDF %s: %d/%d pages with text", path.name, len(parts), total_pages)
    return "\n\n".join(parts)


def _read_docx(path: Path) -> str:
    """
    DOCX tables are read as well as paragraphs. In a BOQ the tables are
    where the quantities are.
    """
    from docx import Document

    doc = Document(str(path))
    parts: List[str] = []

    for para in doc.paragraphs:
        if para.text.strip():
            parts.append(para.text)

    for table in doc.tables:
        for row in table.rows:
            cells = [cell.text.strip() for cell in row.cells if cell.text.strip()]
            if cells:
                parts.append(" | ".join(cells))

    logger.info("Read DOCX %s (%d text blocks)", path.name, len(parts))
    return "\n".join(parts)


def _validate_file(path: Path) -> None:
    if not path.exists():
        raise FileNotFoundError(f"File not found: {path}")

    size_mb = path.stat().st_size / (1024 * 1024)
    if size_mb > config.max_file_size_mb:
        raise ValueError(
            f"File too large ({size_mb:.1f} MB). Max: {config.max_file_size_mb} MB"
        )

    if path.suffix.lower() not in config.supported_formats:
        raise ValueError(
            f"Unsupported format '{path.suffix}'. "
            f"Supported: {', '.join(config.supported_formats)}"
        )
