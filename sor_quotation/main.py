"""
main.py — Command line entry point for SOR Quotation.

    sor-quote list [--search Q]
    sor-quote add --name "Excavation" --unit m3 --rate 100 [--scope ...] [--source ...]
    sor-quote update ID [--name ...] [--unit ...] [--rate ...] [--scope ...] [--source ...]
    sor-quote remove ID
    sor-quote import rates.txt           # bulk import via the LLM extractor
    sor-quote export-csv sor.csv
    sor-quote quote tender.pdf [--output quote.json] [--csv quote.csv]

Every command works on the catalog file given by --catalog (default from
SOR_CATALOG_PATH / config). Commands that change the catalog persist it
before exiting.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from sor_quotation.catalog import RateCatalog
from sor_quotation.config import config
from sor_quotation.errors import InvalidInput, NotFound
from sor_quotation.export import catalog_to_csv, quotation_to_csv, quotation_to_json
from sor_quotation.extraction import LLMExtractor
from sor_quotation.ingestion import read_document_text
from sor_quotation.orchestrator import QuotationBuilder
from sor_quotation.store import JsonCatalogStore

logger = logging.getLogger("sor_quotation")

FIELD_ARGS = ("name", "unit", "rate", "scope", "source")


def _fields_from_args(args: argparse.Namespace) -> Dict[str, Any]:
    mapping = {"scope": "scope_of_work"}
    return {
        mapping.get(key, key): getattr(args, key)
        for key in FIELD_ARGS
        if getattr(args, key, None) is not None
    }


def cmd_list(args: argparse.Namespace, catalog: RateCatalog) -> int:
    records = catalog.search(args.search or "")
    lowest = catalog.lowest_rate_ids()
    for r in records:
        marker = "*" if r.id in lowest else " "
        print(f"{marker} {r.id}  {r.name} | {r.unit} | {r.rate:g} | {r.source}")
    print(f"{len(records)} of {len(catalog)} records (* = lowest rate for its name)")
    return 0


def cmd_add(args: argparse.Namespace, catalog: RateCatalog) -> int:
    record = catalog.add(_fields_from_args(args))
    catalog.persist()
    print(record.id)
    return 0


def cmd_update(args: argparse.Namespace, catalog: RateCatalog) -> int:
    fields = catalog.get(args.id).editable_fields().model_dump()
    fields.update(_fields_from_args(args))
    record = catalog.update(args.id, fields)
    catalog.persist()
    print(record.id)
    return 0


def cmd_remove(args: argparse.Namespace, catalog: RateCatalog) -> int:
    removed = catalog.remove(args.id)
    catalog.persist()
    print("removed" if removed else "not present")
    return 0


def cmd_import(args: argparse.Namespace, catalog: RateCatalog) -> int:
    text = read_document_text(args.file)
    items = LLMExtractor().extract_catalog_items(text)
    if not items:
        logger.warning("No rate records could be extracted from %s", args.file)
        return 0
    created = catalog.add_many(items)
    catalog.persist()
    print(f"Imported {len(created)} rate records")
    return 0


def cmd_export_csv(args: argparse.Namespace, catalog: RateCatalog) -> int:
    out = catalog_to_csv(catalog.snapshot(), args.output)
    print(out)
    return 0


def cmd_quote(args: argparse.Namespace, catalog: RateCatalog) -> int:
    text = read_document_text(args.file)
    items = QuotationBuilder().build(text, catalog)
    payload = quotation_to_json(items)

    if args.output:
        out = Path(args.output)
        out.parent.mkdir(parents=True, exist_ok=True)
        with open(out, "w", encoding="utf-8") as f:
            json.dump(payload, f, indent=2, ensure_ascii=False)
        logger.info("Quotation written to: %s", out)
    else:
        print(json.dumps(payload, indent=2, ensure_ascii=False))

    if args.csv:
        quotation_to_csv(items, args.csv)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="sor-quote",
        description="SOR Quotation — Schedule of Rates database and tender auto-pricing",
    )
    parser.add_argument(
        "--catalog", default=config.store.catalog_path,
        help=f"Catalog JSON file (default: {config.store.catalog_path})",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose logging")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("list", help="List or search rate records")
    p.add_argument("--search", "-s", default="", help="Filter on name, scope or source")
    p.set_defaults(handler=cmd_list)

    p = sub.add_parser("add", help="Add a rate record")
    p.add_argument("--name", required=True)
    p.add_argument("--unit", default="")
    p.add_argument("--rate", required=True, type=float)
    p.add_argument("--scope", default="", help="Scope of work")
    p.add_argument("--source", default="")
    p.set_defaults(handler=cmd_add)

    p = sub.add_parser("update", help="Replace the fields of a rate record")
    p.add_argument("id")
    p.add_argument("--name")
    p.add_argument("--unit")
    p.add_argument("--rate", type=float)
    p.add_argument("--scope", help="Scope of work")
    p.add_argument("--source")
    p.set_defaults(handler=cmd_update)

    p = sub.add_parser("remove", help="Remove a rate record (no-op if absent)")
    p.add_argument("id")
    p.set_defaults(handler=cmd_remove)

    p = sub.add_parser("import", help="Bulk-import rate records from a text/PDF/DOCX file")
    p.add_argument("file")
    p.set_defaults(handler=cmd_import)

    p = sub.add_parser("export-csv", help="Export the catalog as an Excel-friendly CSV")
    p.add_argument("output")
    p.set_defaults(handler=cmd_export_csv)

    p = sub.add_parser("quote", help="Price a tender document against the catalog")
    p.add_argument("file", help="Tender document (TXT, PDF, DOCX)")
    p.add_argument("--output", "-o", default=None, help="JSON output path (default: stdout)")
    p.add_argument("--csv", default=None, help="Also write the quotation as CSV")
    p.set_defaults(handler=cmd_quote)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point."""
    args = build_parser().parse_args(argv)

    level = logging.DEBUG if args.verbose else getattr(logging, config.log_level.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)-7s | %(name)s | %(message)s",
        datefmt="%H:%M:%S",
    )

    catalog = RateCatalog.load(JsonCatalogStore(args.catalog))

    try:
        return args.handler(args, catalog)
    except NotFound as exc:
        logger.error("%s", exc)
        return 1
    except InvalidInput as exc:
        logger.error("Invalid input: %s", exc)
        return 1
    except FileNotFoundError as exc:
        logger.error("File not found: %s", exc)
        return 1
    except ValueError as exc:
        logger.error("Invalid input: %s", exc)
        return 1


if __name__ == "__main__":
    sys.exit(main())
