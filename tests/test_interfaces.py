"""
test_interfaces.py — Tests for everything around the core: export,
document ingestion, the CLI and the HTTP API.

The API tests swap the catalog, extractor and matcher dependencies for
in-memory fakes, so no model and no catalog file are touched.

Run with:
    python tests/test_interfaces.py
    python -m pytest tests/test_interfaces.py -v
"""

from __future__ import annotations

import contextlib
import io
import json
import logging
import sys
import tempfile
from pathlib import Path

# Make sure the project root is importable
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from fastapi.testclient import TestClient

from api.main import app, get_catalog, get_extractor, get_matcher
from sor_quotation.catalog import RateCatalog
from sor_quotation.export import (
    catalog_to_csv,
    quotation_frame,
    quotation_to_csv,
    quotation_to_json,
)
from sor_quotation.ingestion import read_document_text
from sor_quotation.main import main
from sor_quotation.schemas import (
    RateRecord,
    RateRecordInput,
    ScopeCheck,
    TenderItem,
    TenderLineRequest,
)
from sor_quotation.store import JsonCatalogStore, MemoryCatalogStore

logging.basicConfig(level=logging.INFO, format="%(levelname)s | %(message)s")
logger = logging.getLogger(__name__)


class FakeExtractor:
    def __init__(self, lines=(), catalog_items=()):
        self.lines = [TenderLineRequest.model_validate(l) for l in lines]
        self.catalog_items = [RateRecordInput.model_validate(i) for i in catalog_items]

    def extract(self, text):
        return list(self.lines)

    def extract_catalog_items(self, text):
        return list(self.catalog_items)


class FakeMatcher:
    def __init__(self, answers=None):
        self.answers = answers or {}

    def find_best_match(self, name, scope, candidates):
        return self.answers.get(name)

    def check_scope(self, requested_scope, existing_scope):
        return ScopeCheck(is_match=requested_scope == existing_scope,
                          confidence=0.9, reason="canned")


def _run_cli(*argv):
    out = io.StringIO()
    with contextlib.redirect_stdout(out):
        code = main(list(argv))
    return code, out.getvalue()


def _api(catalog, extractor=None, matcher=None):
    app.dependency_overrides[get_catalog] = lambda: catalog
    app.dependency_overrides[get_extractor] = lambda: extractor or FakeExtractor()
    app.dependency_overrides[get_matcher] = lambda: matcher or FakeMatcher()
    return TestClient(app)


def _priced_items():
    rec = RateRecord(id="B", name="GI Pipe 25mm", unit="m", rate=120, created_at=1)
    return [
        TenderItem(name="Pipe 25mm", quantity=50, requested_scope='GI "heavy" pipe',
                   matched_rate=rec, status="review"),
        TenderItem(name="Valve", quantity=2, estimated_rate=300, status="no-match"),
    ]


# ── Export ────────────────────────────────────────────────────────────────

def test_catalog_csv_is_excel_friendly():
    records = [
        RateRecord(id="A", name='Pipe "GI"', unit="m", rate=120, source="CPWD",
                   scope_of_work="Supply, lay", created_at=1),
    ]
    with tempfile.TemporaryDirectory() as tmp:
        out = catalog_to_csv(records, Path(tmp) / "sor.csv")
        raw = out.read_bytes()
    assert raw.startswith(b"\xef\xbb\xbf"), "UTF-8 BOM expected"
    text = raw.decode("utf-8-sig")
    lines = text.split("\r\n")
    assert lines[0] == '"Item Name","Unit","Rate","Source","Scope of Work"'
    assert lines[1] == '"Pipe ""GI""","m","120.0","CPWD","Supply, lay"'
    print("  ✓ test_catalog_csv_is_excel_friendly")


def test_quotation_exports():
    items = _priced_items()
    frame = quotation_frame(items)
    assert list(frame["Item Name"]) == ["Pipe 25mm", "Valve", "GRAND TOTAL"]
    assert list(frame["Amount"]) == [6000.0, 0.0, 6000.0]

    payload = quotation_to_json(items)
    assert payload["grand_total"] == 6000.0
    assert payload["lines"] == [6000.0, 0.0]
    assert payload["items"][0]["matched_rate"]["id"] == "B"
    assert payload["items"][1]["matched_rate"] is None
    json.dumps(payload)

    with tempfile.TemporaryDirectory() as tmp:
        out = quotation_to_csv(items, Path(tmp) / "quote.csv")
        text = out.read_text(encoding="utf-8-sig")
    assert '"GRAND TOTAL"' in text
    assert '"GI ""heavy"" pipe"' in text
    print("  ✓ test_quotation_exports")


# ── Ingestion ─────────────────────────────────────────────────────────────

def test_read_text_and_rejects():
    with tempfile.TemporaryDirectory() as tmp:
        path = Path(tmp) / "tender.txt"
        path.write_text("1. Excavation 100 m3\n2. GI Pipe 25mm 50 m\n", encoding="utf-8")
        assert "GI Pipe 25mm" in read_document_text(path)

        bad = Path(tmp) / "tender.xlsx"
        bad.write_bytes(b"PK")
        try:
            read_document_text(bad)
            raise AssertionError("expected ValueError")
        except ValueError:
            pass

        try:
            read_document_text(Path(tmp) / "missing.txt")
            raise AssertionError("expected FileNotFoundError")
        except FileNotFoundError:
            pass
    print("  ✓ test_read_text_and_rejects")


def test_read_docx_includes_tables():
    from docx import Document

    with tempfile.TemporaryDirectory() as tmp:
        path = Path(tmp) / "boq.docx"
        doc = Document()
        doc.add_paragraph("Bill of Quantities")
        table = doc.add_table(rows=2, cols=3)
        for col, value in enumerate(["Item", "Qty", "Unit"]):
            table.cell(0, col).text = value
        for col, value in enumerate(["Excavation", "100", "m3"]):
            table.cell(1, col).text = value
        doc.save(str(path))

        text = read_document_text(path)
    assert "Bill of Quantities" in text
    assert "Excavation | 100 | m3" in text
    print("  ✓ test_read_docx_includes_tables")


# ── CLI ───────────────────────────────────────────────────────────────────

def test_cli_catalog_commands():
    with tempfile.TemporaryDirectory() as tmp:
        catalog_path = str(Path(tmp) / "sor.json")

        code, out = _run_cli("--catalog", catalog_path, "add", "--name", "Excavation",
                             "--unit", "m3", "--rate", "100", "--source", "CPWD")
        assert code == 0
        first_id = out.strip()

        code, out = _run_cli("--catalog", catalog_path, "add", "--name", "excavation",
                             "--unit", "m3", "--rate", "80")
        second_id = out.strip()

        code, out = _run_cli("--catalog", catalog_path, "list")
        assert code == 0
        assert f"* {second_id}" in out
        assert f"  {first_id}" in out
        assert "2 of 2 records" in out

        code, _ = _run_cli("--catalog", catalog_path, "update", first_id, "--rate", "70")
        assert code == 0
        records = {r.id: r for r in JsonCatalogStore(catalog_path).load()}
        assert records[first_id].rate == 70
        assert records[first_id].source == "CPWD", "unspecified fields are kept"

        code, out = _run_cli("--catalog", catalog_path, "list", "--search", "cpwd")
        assert "1 of 2 records" in out

        code, out = _run_cli("--catalog", catalog_path, "remove", "nope")
        assert (code, out.strip()) == (0, "not present")
        code, out = _run_cli("--catalog", catalog_path, "remove", first_id)
        assert (code, out.strip()) == (0, "removed")

        assert _run_cli("--catalog", catalog_path, "update", "nope", "--rate", "1")[0] == 1
        assert _run_cli("--catalog", catalog_path, "add", "--name", "X", "--rate", "-5")[0] == 1

        csv_path = Path(tmp) / "out" / "sor.csv"
        code, _ = _run_cli("--catalog", catalog_path, "export-csv", str(csv_path))
        assert code == 0
        assert "excavation" in csv_path.read_text(encoding="utf-8-sig")
    print("  ✓ test_cli_catalog_commands")


def test_cli_quote_without_model_is_empty():
    """No model available -> extraction fails -> empty quotation, exit 0."""
    with tempfile.TemporaryDirectory() as tmp:
        tender = Path(tmp) / "tender.txt"
        tender.write_text("Excavation 100 m3", encoding="utf-8")
        out_json = Path(tmp) / "quote.json"
        code, _ = _run_cli("--catalog", str(Path(tmp) / "sor.json"), "quote", str(tender),
                           "--output", str(out_json))
        assert code == 0
        payload = json.loads(out_json.read_text(encoding="utf-8"))
        assert payload["items"] == []
        assert payload["grand_total"] == 0

        assert _run_cli("--catalog", str(Path(tmp) / "sor.json"), "quote",
                        str(Path(tmp) / "missing.pdf"))[0] == 1
    print("  ✓ test_cli_quote_without_model_is_empty")


# ── HTTP API ──────────────────────────────────────────────────────────────

def test_api_rate_crud():
    store = MemoryCatalogStore()
    catalog = RateCatalog.load(store)
    client = _api(catalog)
    try:
        r = client.post("/rates", json={"name": "Excavation", "unit": "m3", "rate": 100})
        assert r.status_code == 201
        a = r.json()
        assert a["lowest_rate"] is False

        b = client.post("/rates", json={"name": "Excavation", "unit": "m3", "rate": 80}).json()
        bench = client.get(f"/rates/{b['id']}/benchmark").json()
        assert bench["lowest_rate"] is True
        assert bench["peers"] == 2
        assert bench["min_rate"] == 80

        listed = client.get("/rates").json()
        assert [x["id"] for x in listed] == [b["id"], a["id"]]
        assert [x["lowest_rate"] for x in listed] == [True, False]

        r = client.put(f"/rates/{a['id']}", json={"name": "Excavation", "rate": 60})
        assert r.status_code == 200
        assert r.json()["created_at"] == a["created_at"]
        assert client.get(f"/rates/{a['id']}").json()["lowest_rate"] is True

        assert client.put("/rates/missing", json={"name": "X", "rate": 1}).status_code == 404
        assert client.get("/rates/missing").status_code == 404
        r = client.post("/rates", json={"name": "Bad", "rate": "abc"})
        assert r.status_code == 422
        assert "rate" in r.json()["error"]

        assert client.delete(f"/rates/{a['id']}").json()["removed"] is True
        assert client.delete(f"/rates/{a['id']}").json()["removed"] is False
        assert len(store.load()) == 1
        assert store.save_count == 4
    finally:
        app.dependency_overrides.clear()
    print("  ✓ test_api_rate_crud")


def test_api_bulk_import():
    catalog = RateCatalog()
    extractor = FakeExtractor(catalog_items=[
        {"name": "Sand", "unit": "m3", "rate": 900},
        {"name": "Cement", "unit": "bag", "rate": 400, "source": "Dealer quote"},
    ])
    client = _api(catalog, extractor=extractor)
    try:
        r = client.post("/rates/bulk", json={"text": "Sand 900/m3, Cement 400/bag"})
        assert r.status_code == 201
        assert [x["name"] for x in r.json()] == ["Sand", "Cement"]
        assert len(catalog) == 2
    finally:
        app.dependency_overrides.clear()
    print("  ✓ test_api_bulk_import")


def test_api_quotation():
    catalog = RateCatalog([
        RateRecord(id="B", name="GI Pipe 25mm", unit="m", rate=120, created_at=1),
        RateRecord(id="C", name="Excavation", unit="m3", rate=100, created_at=2),
    ])
    extractor = FakeExtractor(lines=[
        {"name": "Pipe 25mm", "quantity": 50, "requestedScope": "GI pipe"},
        {"name": "Excavation", "quantity": 10},
        {"name": "Painting", "quantity": 3},
    ])
    matcher = FakeMatcher(answers={"Pipe 25mm": "B", "Excavation": "C"})
    client = _api(catalog, extractor=extractor, matcher=matcher)
    try:
        body = client.post("/quotations", json={"text": "tender text"}).json()
        assert [i["status"] for i in body["items"]] == ["review", "matched", "no-match"]
        assert body["lines"] == [6000.0, 1000.0, 0.0]
        assert body["grand_total"] == 7000.0
        assert body["matched_count"] == 2

        empty = client.post("/quotations", json={"text": "   "}).json()
        assert empty["items"] == [] and empty["grand_total"] == 0
    finally:
        app.dependency_overrides.clear()
    print("  ✓ test_api_quotation")


def test_api_scope_check():
    client = _api(RateCatalog())
    try:
        body = client.post("/scope-check", json={
            "requested_scope": "GI pipe", "existing_scope": "GI pipe",
        }).json()
        assert body == {"is_match": True, "confidence": 0.9, "reason": "canned"}
    finally:
        app.dependency_overrides.clear()
    print("  ✓ test_api_scope_check")


def run_all_tests():
    """Run all tests and report results."""
    print("\n" + "=" * 60)
    print("  SOR Quotation — Interface Tests")
    print("=" * 60 + "\n")

    tests = [
        test_catalog_csv_is_excel_friendly,
        test_quotation_exports,
        test_read_text_and_rejects,
        test_read_docx_includes_tables,
        test_cli_catalog_commands,
        test_cli_quote_without_model_is_empty,
        test_api_rate_crud,
        test_api_bulk_import,
        test_api_quotation,
        test_api_scope_check,
    ]

    passed = 0
    failed = 0

    for test_fn in tests:
        try:
            test_fn()
            passed += 1
        except Exception as exc:
            failed += 1
            print(f"  ✗ {test_fn.__name__} FAILED: {exc}")

    print(f"\n{'=' * 60}")
    print(f"  Results: {passed} passed, {failed} failed, {len(tests)} total")
    print(f"{'=' * 60}\n")

    return failed == 0


if __name__ == "__main__":
    success = run_all_tests()
    sys.exit(0 if success else 1)
