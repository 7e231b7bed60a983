import sys
from pathlib import Path

import pytest
import requests

# Add project root to sys.path
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from core.models import Listing, Product
from etl import providers
from etl.errors import ProviderError
from etl.providers import (
    extract_numeric,
    fetch_dummyjson,
    infer_currency,
    map_realstore_items,
    run_providers,
    search_realstore,
)


class FakeResponse:
    def __init__(self, payload=None, status_code=200, reason="OK", text=""):
        self._payload = payload
        self.status_code = status_code
        self.reason = reason
        self.text = text
        self.encoding = "utf-8"

    @property
    def ok(self):
        return self.status_code < 400

    def json(self):
        if isinstance(self._payload, Exception):
            raise self._payload
        return self._payload


DUMMY_PAYLOAD = {
    "products": [
        {
            "id": 1,
            "title": "Essence Mascara Lash Princess",
            "description": "Popular mascara",
            "category": "beauty",
            "price": 9.99,
            "stock": 5,
            "rating": 4.9,
            "thumbnail": "https://cdn.dummyjson.com/1/thumb.png",
            "images": ["https://cdn.dummyjson.com/1/1.png"],
        },
        {"id": 2, "title": "Out of stock thing", "price": 3.5, "stock": 0},
    ]
}


def _raise(exc):
    raise exc


def _patch_get(monkeypatch, handler):
    calls = []

    def fake_get(url, params=None, headers=None, timeout=None):
        calls.append({"url": url, "params": params, "headers": headers, "timeout": timeout})
        return handler(url)

    monkeypatch.setattr(providers.requests, "get", fake_get)
    return calls


def test_fetch_dummyjson_maps_products(monkeypatch, settings):
    calls = _patch_get(monkeypatch, lambda url: FakeResponse(DUMMY_PAYLOAD))
    payload = fetch_dummyjson(settings.provider("dummyjson"), query=" mascara ", limit=500)

    assert calls[0]["url"] == "https://dummyjson.com/products/search"
    assert calls[0]["params"] == {"q": "mascara", "limit": 100}
    assert calls[0]["timeout"] == 10.0
    assert [p["id"] for p in payload] == ["dummyjson-1", "dummyjson-2"]
    first = payload[0]
    assert first["imageUrl"] == "https://cdn.dummyjson.com/1/1.png"
    assert first["listings"][0]["inStock"] is True
    assert payload[1]["listings"][0]["inStock"] is False
    assert payload[1]["brand"] == "DummyJSON"


@pytest.mark.parametrize("handler, error_type", [
    (lambda url: _raise(requests.exceptions.Timeout("slow")), "timeout"),
    (lambda url: _raise(requests.exceptions.ConnectionError("refused")), "network_error"),
    (lambda url: FakeResponse(status_code=503, reason="Service Unavailable", text="down"), "http_error"),
    (lambda url: FakeResponse(ValueError("Expecting value")), "parse_error"),
    (lambda url: FakeResponse(["not", "an", "object"]), "parse_error"),
])
def test_dummyjson_failures_are_classified(monkeypatch, settings, handler, error_type):
    _patch_get(monkeypatch, handler)
    with pytest.raises(ProviderError) as excinfo:
        fetch_dummyjson(settings.provider("dummyjson"))
    assert excinfo.value.error_type == error_type
    assert excinfo.value.provider_id == "dummyjson"


def test_realstore_requires_configuration(settings):
    config = settings.provider("realstore")
    with pytest.raises(ProviderError) as excinfo:
        search_realstore(config, "iphone")
    assert excinfo.value.error_type == "config_missing"


def test_realstore_search(monkeypatch, settings):
    config = settings.provider("realstore").model_copy(update={"enabled": True, "api_key": "secret"})
    data = {
        "data": {
            "products": [
                {
                    "product_title": "Apple iPhone 15",
                    "product_photos": ["https://img.test/iphone.jpg"],
                    "offers": [
                        {"store_name": "Best Buy", "price": "$799.00", "offer_page_url": "https://bestbuy.test/1",
                         "delivery_tag": "Free 2-day delivery"},
                        {"store_name": "Best Buy", "price": "$799.00", "offer_page_url": "https://bestbuy.test/1"},
                        {"store_name": "Shop", "price": "", "offer_page_url": "https://shop.test/1"},
                    ],
                }
            ]
        }
    }
    calls = _patch_get(monkeypatch, lambda url: FakeResponse(data))
    payload = search_realstore(config, "iPhone 15")

    assert calls[0]["url"] == "https://rtp.example.test/search-v2"
    assert calls[0]["headers"]["X-RapidAPI-Key"] == "secret"
    assert calls[0]["timeout"] == 20.0
    assert payload[0]["id"] == "rtp-iphone-15-0"
    listings = payload[0]["listings"]
    assert len(listings) == 1
    assert listings[0]["price"] == 799.0
    assert listings[0]["currency"] == "USD"
    assert listings[0]["fastDelivery"] is True


def test_realstore_helpers():
    assert extract_numeric("€19,99") == 19.99
    assert extract_numeric("$49.99") == 49.99
    assert extract_numeric(None) is None
    assert infer_currency("£20") == "GBP"
    assert infer_currency("20 lei") is None
    assert map_realstore_items([{}], "")[0]["id"] == "rtp-query-0"


def test_run_providers_reports_one_outcome_each(monkeypatch, session, settings):
    _patch_get(monkeypatch, lambda url: FakeResponse(DUMMY_PAYLOAD))
    outcomes = run_providers(session, settings)

    by_id = {o.provider_id: o for o in outcomes}
    assert by_id["dummyjson"].ok
    assert by_id["dummyjson"].fetched == 2
    assert by_id["dummyjson"].ingested == 2
    assert by_id["realstore"].status == "disabled"

    assert session.query(Product).count() == 2
    listing = session.query(Listing).filter(Listing.product_id == "dummyjson-1").one()
    assert listing.store_name == "DummyJSON"
    assert listing.source == "dummyjson"


def test_run_providers_keeps_going_after_a_failure(monkeypatch, session, settings):
    settings.providers[1] = settings.providers[1].model_copy(update={"enabled": True})
    _patch_get(monkeypatch, lambda url: FakeResponse(status_code=500, reason="Server Error"))

    outcomes = run_providers(session, settings, query="phone")

    assert [(o.provider_id, o.status) for o in outcomes] == [
        ("dummyjson", "http_error"),
        ("realstore", "config_missing"),
    ]
    assert outcomes[0].http_status == 500
    assert session.query(Product).count() == 0


def test_run_providers_filters_by_id(monkeypatch, session, settings):
    _patch_get(monkeypatch, lambda url: FakeResponse(DUMMY_PAYLOAD))
    outcomes = run_providers(session, settings, provider_ids=["realstore"])
    assert [o.provider_id for o in outcomes] == ["realstore"]
