import sys
from pathlib import Path

import pytest

# Add project root to sys.path
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from core.models import Listing, Product, ProductPriceHistory
from core.repository import CatalogRepository
from etl.errors import ManualEntryError, PayloadFormatError
from etl.import_service import add_manual_listing, add_manual_product, ingest_products


def _payload(listings, history=None):
    return {
        "products": [
            {
                "id": "seed-laptop-1",
                "name": "Lenovo IdeaPad Slim 3",
                "description": "15.6 inch laptop",
                "imageUrl": "https://img.test/ideapad.jpg",
                "listings": listings,
                "priceHistory": history or [],
            }
        ]
    }


def test_ingest_creates_product_with_listings_and_history(session, settings):
    result = ingest_products(
        _payload(
            [
                {"storeName": "altex", "storeId": "altex", "url": "https://altex.ro/ideapad", "price": 2499, "currency": "ron"},
                {"storeName": "PC Garage", "url": "https://pcgarage.ro/ideapad", "price": 2399, "currency": "RON"},
            ],
            [
                {"month": "2024-01", "averagePrice": 2600, "currency": "RON"},
                {"date": "2024-02-15T10:00:00Z", "price": 2550, "currency": "RON"},
            ],
        ),
        session,
        settings=settings,
    )

    assert result.count == 1
    assert result.product_ids == ["seed-laptop-1"]

    product = session.get(Product, "seed-laptop-1")
    assert product.category == "Laptops"
    assert product.brand == "Lenovo"
    repo = CatalogRepository(session)
    listings = repo.listings_for(["seed-laptop-1"])
    assert sorted(l.store_name for l in listings) == ["Altex", "PC Garage"]
    assert {l.currency for l in listings} == {"RON"}

    history = repo.price_history_for(["seed-laptop-1"])
    assert [p.price for p in history] == [2600, 2550]
    first = history[0].date
    assert (first.year, first.month, first.day, first.hour) == (2024, 1, 1, 0)


def test_ingest_replaces_listings_and_history_wholesale(session, settings):
    ingest_products(
        _payload(
            [{"storeName": "Altex", "url": "https://altex.ro/ideapad", "price": 2499}],
            [{"month": "2024-01", "price": 2600}],
        ),
        session,
        settings=settings,
    )
    ingest_products(
        _payload(
            [{"storeName": "Flanco", "url": "https://flanco.ro/ideapad", "price": 2450}],
            [{"month": "2024-03", "price": 2450}],
        ),
        session,
        settings=settings,
    )

    assert session.query(Product).count() == 1
    assert [l.store_name for l in session.query(Listing).all()] == ["Flanco"]
    assert [p.price for p in session.query(ProductPriceHistory).all()] == [2450]


def test_ingest_skips_blocked_listings_and_invalid_products(session, settings):
    payload = [
        {"name": "", "listings": []},
        {
            "name": "Casti JBL Tune 510",
            "listings": [
                {"storeName": "eMAG", "url": "https://www.emag.ro/jbl", "price": 199},
                {"storeName": "Altex", "url": "https://altex.ro/jbl", "price": 189},
                {"storeName": "ALTEX", "url": "https://altex.ro/jbl", "price": 189},
            ],
        },
    ]
    result = ingest_products(payload, session, settings=settings)

    assert result.count == 1
    assert [l.store_name for l in session.query(Listing).all()] == ["Altex"]


def test_ingest_without_listings_key_keeps_existing_listings(session, settings):
    ingest_products(_payload([{"storeName": "Altex", "url": "https://altex.ro/ideapad", "price": 2499}]), session, settings=settings)
    ingest_products({"products": [{"id": "seed-laptop-1", "name": "Lenovo IdeaPad Slim 3 (2024)"}]}, session, settings=settings)

    product = session.get(Product, "seed-laptop-1")
    assert product.name == "Lenovo IdeaPad Slim 3 (2024)"
    assert session.query(Listing).count() == 1


def test_ingest_rejects_malformed_payload(session, settings):
    with pytest.raises(PayloadFormatError):
        ingest_products('{"products": ', session, settings=settings)
    with pytest.raises(PayloadFormatError):
        ingest_products({"products": "nope"}, session, settings=settings)


def test_manual_product_and_listing(session, settings):
    product_id = add_manual_product(session, {"name": "Samsung Galaxy S24", "category": "Phones"})
    listing = add_manual_listing(
        session,
        product_id,
        {"storeName": "Altex", "storeId": "altex", "url": "https://altex.ro/s24", "price": 3999, "currency": "ron"},
        settings=settings,
    )

    assert listing.product_id == product_id
    assert listing.currency == "RON"
    assert listing.country_code == "RO"
    assert listing.store_logo_url == "https://www.altex.ro/favicon.ico"
    assert session.query(ProductPriceHistory).count() == 1

    # Same store and URL updates in place.
    again = add_manual_listing(
        session, product_id, {"storeName": "altex", "url": "https://altex.ro/s24", "price": 3899, "currency": "RON"},
        settings=settings,
    )
    assert again.id == listing.id
    assert again.price == 3899
    assert session.query(ProductPriceHistory).count() == 2


def test_manual_entry_errors(session, settings):
    with pytest.raises(ManualEntryError) as excinfo:
        add_manual_product(session, {"name": " ", "category": "Gadgets"})
    assert set(excinfo.value.errors) == {"name", "category"}

    with pytest.raises(ManualEntryError) as excinfo:
        add_manual_listing(session, "missing", {"storeName": "Altex", "url": "https://altex.ro/x", "price": 1, "currency": "RON"}, settings=settings)
    assert "productId" in excinfo.value.errors

    product_id = add_manual_product(session, {"name": "Blocked thing"})
    with pytest.raises(ManualEntryError) as excinfo:
        add_manual_listing(session, product_id, {"storeName": "eMAG", "url": "https://emag.ro/x", "price": 1, "currency": "RON"}, settings=settings)
    assert "storeName" in excinfo.value.errors


def test_ingest_keeps_admin_category_and_brand(session, settings):
    add_manual_product(session, {"id": "p1", "name": "Pixel 8 Pro", "category": "Laptops", "brand": "Google"})

    ingest_products([{"id": "p1", "name": "Pixel 8 Pro"}], session, settings=settings)
    product = session.get(Product, "p1")
    assert product.category == "Laptops"
    assert product.brand == "Google"

    add_manual_product(session, {"id": "p1", "name": "Pixel 8 Pro"})
    assert session.get(Product, "p1").category == "Laptops"

    # A category named in the payload still wins.
    ingest_products([{"id": "p1", "name": "Pixel 8 Pro", "category": "Phones"}], session, settings=settings)
    assert session.get(Product, "p1").category == "Phones"


def test_bad_history_points_are_skipped_not_fatal(session, settings):
    result = ingest_products(
        _payload(
            [{"storeName": "Altex", "url": "https://altex.ro/ideapad", "price": 2499}],
            [
                {"month": "2024-01", "price": 2600},
                {"month": "2024", "price": 2500},
                {"month": "2024-13", "price": 2500},
                {"date": "last tuesday", "price": 2500},
            ],
        ),
        session,
        settings=settings,
    )

    assert result.product_ids == ["seed-laptop-1"]
    assert session.query(Listing).count() == 1
    assert [p.price for p in session.query(ProductPriceHistory).all()] == [2600]
