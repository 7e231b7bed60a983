import sys
from pathlib import Path

# Add project root to sys.path
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from etl.matching import ListingKey, is_blocked_store_or_url
from etl.stores import (
    default_country_for_store,
    detect_brand_from_name,
    extract_store_from_url,
    is_valid_store_id,
    normalize_store_name,
    store_id_for_domain,
    store_logo_url,
)


def test_known_store_ids_map_to_display_names():
    assert normalize_store_name("pcgarage", "pcgarage.ro") == "PC Garage"
    assert normalize_store_name(" AMAZON_DE ", "amazon") == "Amazon.de"
    assert normalize_store_name("unknown-shop", "Some Shop") == "Some Shop"
    assert normalize_store_name(None, "Some Shop") == "Some Shop"


def test_default_country_resolution():
    assert default_country_for_store("amazon_de") == "DE"
    assert default_country_for_store("other_eu", "fr") == "RO"
    assert default_country_for_store("nope", " fr ") == "FR"
    assert default_country_for_store("nope") is None


def test_store_logo_and_ids():
    assert store_logo_url("altex") == "https://www.altex.ro/favicon.ico"
    assert store_logo_url("other_eu") is None
    assert is_valid_store_id("amazon_de")
    assert not is_valid_store_id("amazon de")


def test_store_from_url():
    assert store_id_for_domain("https://www.flanco.ro/p/123") == "flanco"
    assert store_id_for_domain("m.altex.ro") == "altex"
    assert extract_store_from_url("https://www.altex.ro/x") == "Altex"
    assert extract_store_from_url("https://www.shop-example.ro/x") == "shop-example.ro"
    assert extract_store_from_url("not a url") == "unknown"


def test_brand_detection():
    assert detect_brand_from_name("Apple iPhone 15 128GB") == "Apple"
    assert detect_brand_from_name("Laptop Lenovo IdeaPad Slim 3") == "Lenovo"
    assert detect_brand_from_name("Generic USB cable") == "Unknown"
    assert detect_brand_from_name(None) == "Unknown"
    assert detect_brand_from_name("HPE ProLiant DL380 server") == "Unknown"
    assert detect_brand_from_name("LGBT pride flag") == "Unknown"
    assert detect_brand_from_name("(Samsung) Galaxy A54") == "Samsung"


def test_blocklist_matches_store_or_url():
    assert is_blocked_store_or_url("eMAG", "https://shop.test/x")
    assert is_blocked_store_or_url("Marketplace", "https://www.emag.ro/laptop")
    assert not is_blocked_store_or_url("Altex", "https://altex.ro/x")


def test_listing_key_folds_store_case():
    a = ListingKey.from_parts("p1", "PC Garage", "https://x.test/1")
    b = ListingKey.from_parts("p1", "pc  garage", "https://x.test/1 ")
    c = ListingKey.from_parts("p1", "PC Garage", "https://x.test/2")
    assert a == b
    assert hash(a) == hash(b)
    assert a != c
