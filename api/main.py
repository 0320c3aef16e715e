from typing import Any, Dict, Optional

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from sor_quotation.catalog import RateCatalog
from sor_quotation.config import config
from sor_quotation.errors import InvalidInput, NotFound
from sor_quotation.export import quotation_to_json
from sor_quotation.extraction import LLMExtractor
from sor_quotation.matching import LLMMatcher
from sor_quotation.orchestrator import QuotationBuilder
from sor_quotation.store import JsonCatalogStore, MemoryCatalogStore

app = FastAPI(title="SOR Quotation")
app.add_middleware(CORSMiddleware,
    allow_origins=["http://localhost:5173"],
    allow_methods=["*"], allow_headers=["*"])

_catalog: Optional[RateCatalog] = None
_extractor: Optional[LLMExtractor] = None
_matcher: Optional[LLMMatcher] = None


class TextRequest(BaseModel):
    text: str = ""


class ScopeCheckRequest(BaseModel):
    requested_scope: str = ""
    existing_scope: str = ""


def get_catalog() -> RateCatalog:
    global _catalog
    if _catalog is None:
        path = config.store.catalog_path
        store = JsonCatalogStore(path) if path else MemoryCatalogStore()
        _catalog = RateCatalog.load(store)
    return _catalog


def get_extractor():
    global _extractor
    if _extractor is None:
        _extractor = LLMExtractor()
    return _extractor


def get_matcher():
    global _matcher
    if _matcher is None:
        _matcher = LLMMatcher()
    return _matcher


@app.exception_handler(NotFound)
async def not_found_handler(request: Request, exc: NotFound):
    return JSONResponse(status_code=404, content={"error": str(exc)})


@app.exception_handler(InvalidInput)
async def invalid_input_handler(request: Request, exc: InvalidInput):
    return JSONResponse(status_code=422, content={"error": str(exc)})


def _record_out(record, catalog: RateCatalog) -> Dict[str, Any]:
    data = record.model_dump(mode="json")
    data["lowest_rate"] = catalog.lowest_rate_for(record)
    return data


@app.get("/rates")
def list_rates(q: str = "", catalog: RateCatalog = Depends(get_catalog)):
    return [_record_out(r, catalog) for r in catalog.search(q)]


@app.get("/rates/{record_id}")
def get_rate(record_id: str, catalog: RateCatalog = Depends(get_catalog)):
    return _record_out(catalog.get(record_id), catalog)


@app.post("/rates", status_code=201)
def add_rate(payload: Dict[str, Any], catalog: RateCatalog = Depends(get_catalog)):
    record = catalog.add(payload)
    catalog.persist()
    return _record_out(record, catalog)


@app.post("/rates/bulk", status_code=201)
def import_rates(body: TextRequest,
                 catalog: RateCatalog = Depends(get_catalog),
                 extractor=Depends(get_extractor)):
    created = catalog.add_many(extractor.extract_catalog_items(body.text))
    catalog.persist()
    return [_record_out(r, catalog) for r in created]


@app.put("/rates/{record_id}")
def update_rate(record_id: str, payload: Dict[str, Any],
                catalog: RateCatalog = Depends(get_catalog)):
    record = catalog.update(record_id, payload)
    catalog.persist()
    return _record_out(record, catalog)


@app.delete("/rates/{record_id}")
def delete_rate(record_id: str, catalog: RateCatalog = Depends(get_catalog)):
    removed = catalog.remove(record_id)
    catalog.persist()
    return {"deleted": record_id, "removed": removed}


@app.get("/rates/{record_id}/benchmark")
def rate_benchmark(record_id: str, catalog: RateCatalog = Depends(get_catalog)):
    record = catalog.get(record_id)
    peers = catalog.find_by_name(record.name)
    return {
        "id": record.id,
        "name": record.name,
        "rate": record.rate,
        "peers": len(peers),
        "lowest_rate": catalog.lowest_rate_for(record),
        "min_rate": min(p.rate for p in peers),
    }


@app.post("/quotations")
def create_quotation(body: TextRequest,
                     catalog: RateCatalog = Depends(get_catalog),
                     extractor=Depends(get_extractor),
                     matcher=Depends(get_matcher)):
    builder = QuotationBuilder(extractor=extractor, matcher=matcher)
    return quotation_to_json(builder.build(body.text, catalog))


@app.post("/scope-check")
def scope_check(body: ScopeCheckRequest, matcher=Depends(get_matcher)):
    return matcher.check_scope(body.requested_scope, body.existing_scope).model_dump()
