import sys
from pathlib import Path
from fastapi.testclient import TestClient
import pytest

# Add project root to sys.path
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from api.server import app, get_app_settings, get_session

FEED = (
    "product_name,price,product_url,currency\n"
    "Widget X,100,https://www.altex.ro/widget-x,RON\n"
    "Widget X,95,https://www.pcgarage.ro/widget-x,RON\n"
)


@pytest.fixture
def client(session, settings):
    app.dependency_overrides[get_session] = lambda: session
    app.dependency_overrides[get_app_settings] = lambda: settings
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_health_check(client):
    """Tests if the health check endpoint is working."""
    response = client.get("/healthz")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_import_feed_endpoint(client):
    response = client.post("/admin/import-feed", json={"provider": "profitshare", "csv": FEED})
    assert response.status_code == 200
    body = response.json()
    assert body["products_created"] == 1
    assert body["listings_created"] == 2
    assert body["stats"]["provider"] == "profitshare"


def test_import_feed_rejects_bad_requests(client, settings):
    assert client.post("/admin/import-feed", json={"provider": "nope", "csv": FEED}).status_code == 400
    assert client.post("/admin/import-feed", json={"provider": "profitshare"}).status_code == 400

    response = client.post("/admin/import-feed", json={"provider": "profitshare", "csv": "colour\nred\n"})
    assert response.status_code == 400
    assert "price" in response.json()["detail"]

    settings.enable_affiliate_import = False
    assert client.post("/admin/import-feed", json={"provider": "profitshare", "csv": FEED}).status_code == 403


def test_ingest_endpoint(client):
    payload = {"products": [{"id": "seed-1", "name": "Laptop HP 250 G9"}]}
    response = client.post("/internal/ingest", json=payload)
    assert response.status_code == 200
    assert response.json() == {"count": 1, "product_ids": ["seed-1"]}

    assert client.post("/internal/ingest", json={"products": "nope"}).status_code == 400


def test_manual_entry_endpoints(client):
    response = client.post("/admin/products", json={"name": "Samsung Galaxy S24", "category": "Phones"})
    assert response.status_code == 200
    product_id = response.json()["id"]

    listing = {"storeName": "Altex", "url": "https://altex.ro/s24", "price": 3999, "currency": "RON"}
    response = client.post(f"/admin/products/{product_id}/listings", json=listing)
    assert response.status_code == 200
    assert response.json()["store_name"] == "Altex"

    assert client.post("/admin/products/missing/listings", json=listing).status_code == 404
    bad = client.post(f"/admin/products/{product_id}/listings", json=dict(listing, price=-1))
    assert bad.status_code == 400
    assert "price" in bad.json()["detail"]
    assert client.post("/admin/products", json={"name": ""}).status_code == 400


def test_maintenance_and_deals_endpoints(client):
    client.post("/internal/ingest", json=[{"id": "dummyjson-1", "name": "Mascara"}])

    preview = client.post("/admin/cleanup-demo")
    assert preview.json()["matched"] == 1
    assert preview.json()["deleted"] == 0

    assert client.post("/admin/reinfer-categories", params={"dry_run": True}).status_code == 200
    assert client.get("/deals").json() == []


def test_providers_endpoint_reports_disabled(client):
    response = client.post("/admin/providers/run", json={"provider_ids": ["realstore"]})
    assert response.status_code == 200
    assert response.json()[0]["status"] == "disabled"
