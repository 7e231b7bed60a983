import sys
from pathlib import Path
from typing import Any, List, Optional

from fastapi import Body, Depends, FastAPI, HTTPException
from pydantic import BaseModel

# Add project root to sys.path
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from config import Settings, get_settings
from core.database import SessionLocal
from core.schemas import ImportSummary, IngestResult, ListingView
from etl.deals import find_great_deals
from etl.errors import IngestionError, ManualEntryError, PayloadFormatError, ProviderError
from etl.import_service import ImportOptions, add_manual_listing, add_manual_product, import_csv_feed, ingest_products
from etl.maintenance import cleanup_demo_products, reinfer_categories
from etl.parsers import get_dialect, is_valid_provider
from etl.providers import fetch_feed_csv, run_providers

app = FastAPI(title="PriceLance catalog ingestion")


def get_session():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


def get_app_settings() -> Settings:
    return get_settings()


class FeedImportRequest(BaseModel):
    provider: str = "profitshare"
    csv: Optional[str] = None
    url: Optional[str] = None
    default_country_code: Optional[str] = None
    validate_urls: bool = False


class ProviderRunRequest(BaseModel):
    query: str = ""
    provider_ids: Optional[List[str]] = None


class ProviderOutcomeResponse(BaseModel):
    provider_id: str
    status: str
    message: Optional[str] = None
    http_status: Optional[int] = None
    fetched: int = 0
    ingested: int = 0


class Deal(BaseModel):
    product_id: str
    current_price: float
    average_price: float
    discount_percent: int
    label: str


@app.get("/healthz")
def health_check():
    return {"status": "ok"}


@app.post("/admin/import-feed", response_model=ImportSummary)
def import_feed(request: FeedImportRequest, session=Depends(get_session), settings: Settings = Depends(get_app_settings)):
    """Import an affiliate or sheet CSV, given inline or as a URL to fetch."""
    if not settings.enable_affiliate_import:
        raise HTTPException(status_code=403, detail="Affiliate import is disabled")
    if not is_valid_provider(request.provider):
        raise HTTPException(status_code=400, detail=f"Unknown provider '{request.provider}'")
    if not request.csv and not request.url:
        raise HTTPException(status_code=400, detail="Either 'csv' or 'url' is required")

    content = request.csv
    if not content:
        try:
            content = fetch_feed_csv(request.url)
        except ProviderError as exc:
            raise HTTPException(status_code=502, detail=f"Could not fetch feed ({exc.error_type}): {exc}")

    dialect = get_dialect(request.provider)
    options = ImportOptions(
        source=dialect.source,
        default_country_code=request.default_country_code,
        validate_urls=request.validate_urls,
        affiliate_provider=dialect.affiliate_provider,
    )
    try:
        return import_csv_feed(content, request.provider, session, options=options, settings=settings)
    except IngestionError as exc:
        raise HTTPException(status_code=400, detail=str(exc))


@app.post("/internal/ingest", response_model=IngestResult)
def ingest(payload: Any = Body(...), session=Depends(get_session), settings: Settings = Depends(get_app_settings)):
    try:
        return ingest_products(payload, session, settings=settings)
    except PayloadFormatError as exc:
        raise HTTPException(status_code=400, detail=str(exc))


@app.post("/admin/products")
def create_manual_product(data: dict = Body(...), session=Depends(get_session)):
    try:
        return {"id": add_manual_product(session, data)}
    except ManualEntryError as exc:
        raise HTTPException(status_code=400, detail=exc.errors)


@app.post("/admin/products/{product_id}/listings", response_model=ListingView)
def create_manual_listing(product_id: str, data: dict = Body(...), session=Depends(get_session),
                          settings: Settings = Depends(get_app_settings)):
    try:
        return add_manual_listing(session, product_id, data, settings=settings)
    except ManualEntryError as exc:
        status = 404 if "productId" in exc.errors else 400
        raise HTTPException(status_code=status, detail=exc.errors)


@app.post("/admin/reinfer-categories")
def reinfer(dry_run: bool = False, only_missing: bool = False, session=Depends(get_session)):
    return reinfer_categories(session, only_missing=only_missing, dry_run=dry_run)


@app.post("/admin/cleanup-demo")
def cleanup_demo(dry_run: bool = True, session=Depends(get_session)):
    return cleanup_demo_products(session, dry_run=dry_run)


@app.post("/admin/providers/run", response_model=List[ProviderOutcomeResponse])
def run_provider_fetch(request: ProviderRunRequest, session=Depends(get_session),
                       settings: Settings = Depends(get_app_settings)):
    outcomes = run_providers(session, settings, query=request.query, provider_ids=request.provider_ids)
    return [
        ProviderOutcomeResponse(
            provider_id=o.provider_id,
            status=o.status,
            message=o.message,
            http_status=o.http_status,
            fetched=o.fetched,
            ingested=o.ingested,
        )
        for o in outcomes
    ]


@app.get("/deals", response_model=List[Deal])
def deals(min_percent: int = 15, limit: int = 20, session=Depends(get_session)):
    return find_great_deals(session, min_percent=min_percent, limit=limit)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
