"""
External product sources.

Every provider is fetched with requests under the timeout from its
ProviderConfig. A provider that is disabled, misconfigured or failing
produces an outcome describing why; it never stops the others.
"""
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional

import requests
from slugify import slugify

from etl.errors import (
    CONFIG_MISSING,
    HTTP_ERROR,
    NETWORK_ERROR,
    PARSE_ERROR,
    TIMEOUT,
    UNKNOWN,
    ProviderError,
)
from etl.import_service import ingest_products

logger = logging.getLogger(__name__)

MAX_OFFERS_PER_PRODUCT = 5
REALSTORE_HOST = 'real-time-product-search.p.rapidapi.com'
FAST_DELIVERY_PATTERN = re.compile(r'same day|1-day|2-day|express', re.IGNORECASE)


@dataclass
class ProviderOutcome:
    provider_id: str
    status: str
    message: Optional[str] = None
    http_status: Optional[int] = None
    fetched: int = 0
    ingested: int = 0
    product_ids: List[str] = field(default_factory=list)

    @property
    def ok(self):
        return self.status == 'ok'


def _request(url, provider_id, timeout, params=None, headers=None):
    try:
        response = requests.get(url, params=params, headers=headers, timeout=timeout)
    except requests.exceptions.Timeout as exc:
        raise ProviderError(TIMEOUT, f"Request timed out after {timeout}s: {url}", provider_id) from exc
    except requests.exceptions.RequestException as exc:
        raise ProviderError(NETWORK_ERROR, f"Network error: {exc}", provider_id) from exc

    if not response.ok:
        raise ProviderError(
            HTTP_ERROR,
            f"HTTP {response.status_code} {response.reason}: {response.text[:200]}",
            provider_id,
            http_status=response.status_code,
        )
    return response


def _get_json(url, provider_id, timeout, params=None, headers=None):
    response = _request(url, provider_id, timeout, params=params, headers=headers)
    try:
        return response.json()
    except ValueError as exc:
        raise ProviderError(PARSE_ERROR, f"Failed to parse JSON response: {exc}", provider_id) from exc


def fetch_feed_csv(url, timeout=20):
    """Download a CSV export (e.g. a published spreadsheet) as text."""
    response = _request(url, 'csv_url', timeout)
    response.encoding = response.encoding or 'utf-8'
    return response.text


# ---------------------------------------------------------------------------
# DummyJSON
# ---------------------------------------------------------------------------

def map_dummyjson_products(products):
    now = datetime.now(timezone.utc).isoformat()
    payload = []
    for p in products:
        product_id = f"dummyjson-{p['id']}"
        image_url = (p.get('images') or [None])[0] or p.get('thumbnail')
        payload.append({
            'id': product_id,
            'name': p.get('title'),
            'displayName': p.get('title'),
            'description': p.get('description'),
            'category': p.get('category'),
            'brand': p.get('brand') or 'DummyJSON',
            'imageUrl': image_url,
            'thumbnailUrl': p.get('thumbnail') or image_url,
            'listings': [{
                'storeName': 'DummyJSON',
                'url': f"https://dummyjson.com/products/{p['id']}",
                'imageUrl': image_url,
                'price': p.get('price'),
                'currency': 'USD',
                'shippingCost': 0,
                'deliveryDays': 5,
                'fastDelivery': True,
                'location': 'Online',
                'inStock': (p.get('stock') or 0) > 0,
                'rating': p.get('rating'),
                'reviewCount': p.get('stock'),
            }],
            'priceHistory': [{'date': now, 'price': p.get('price'), 'currency': 'USD', 'storeName': 'DummyJSON'}],
        })
    return payload


def fetch_dummyjson(config, query='', limit=100):
    limit = limit if limit and 0 < limit <= 100 else 100
    base = config.base_url.rstrip('/')
    if query.strip():
        url, params = f"{base}/products/search", {'q': query.strip(), 'limit': limit}
    else:
        url, params = f"{base}/products", {'limit': limit}
    data = _get_json(url, config.id, config.timeout_seconds, params=params)
    if not isinstance(data, dict) or not isinstance(data.get('products', []), list):
        raise ProviderError(PARSE_ERROR, 'Unexpected DummyJSON response shape', config.id)
    return map_dummyjson_products(data.get('products') or [])


# ---------------------------------------------------------------------------
# Real-time product search
# ---------------------------------------------------------------------------

def extract_numeric(value):
    if not value:
        return None
    cleaned = re.sub(r'[^\d.,-]', '', str(value)).replace(',', '.', 1)
    try:
        return float(cleaned)
    except ValueError:
        return None


def infer_currency(price_text):
    if not price_text:
        return None
    if '€' in price_text:
        return 'EUR'
    if '£' in price_text:
        return 'GBP'
    if '$' in price_text:
        return 'USD'
    return None


def _offer_listings(item, image_url):
    raw_offers = item.get('offers') or item.get('offer_list') or []
    if not isinstance(raw_offers, list):
        raw_offers = []
    if not raw_offers and isinstance(item.get('offer'), dict):
        raw_offers = [item['offer']]
    fallback_price = (item.get('typical_price_range') or [None])[0]

    seen = set()
    listings = []
    for offer in raw_offers:
        price_text = offer.get('price') or fallback_price
        price = extract_numeric(price_text)
        url = offer.get('offer_page_url') or item.get('product_offers_page_url') or item.get('product_page_url')
        if not (price and price > 0 and url):
            continue
        store_name = offer.get('store_name') or 'Unknown store'
        key = (store_name, url)
        if key in seen:
            continue
        seen.add(key)

        rating = offer.get('store_rating', item.get('product_rating'))
        listings.append({
            'storeName': store_name,
            'url': url,
            'imageUrl': image_url,
            'price': price,
            'currency': infer_currency(price_text) or 'USD',
            'shippingCost': extract_numeric(offer.get('shipping')),
            'fastDelivery': bool(FAST_DELIVERY_PATTERN.search(offer.get('delivery_tag') or '')),
            'inStock': True,
            'rating': rating if isinstance(rating, (int, float)) else None,
            'reviewCount': item.get('product_num_reviews') if isinstance(item.get('product_num_reviews'), int) else None,
        })
        if len(listings) >= MAX_OFFERS_PER_PRODUCT:
            break
    return listings


def map_realstore_items(items, query):
    slug = slugify(query) or 'query'
    payload = []
    for index, item in enumerate(items):
        image_url = (item.get('product_photos') or [None])[0]
        payload.append({
            'id': f"rtp-{slug}-{index}",
            'name': item.get('product_title') or query,
            'displayName': item.get('product_title') or query,
            'description': item.get('product_description'),
            'imageUrl': image_url,
            'thumbnailUrl': image_url,
            'listings': _offer_listings(item, image_url),
        })
    return payload


def _realstore_items(data):
    if not isinstance(data, dict):
        return []
    data_field = data.get('data')
    if isinstance(data_field, dict):
        candidates = data_field.get('products') or data_field.get('items')
    else:
        candidates = data_field
    candidates = candidates or data.get('products') or data.get('items') or []
    return candidates if isinstance(candidates, list) else []


def search_realstore(config, query, limit=10, country='us'):
    if not config.is_configured:
        raise ProviderError(CONFIG_MISSING, 'Missing base URL or API key for real-time product search', config.id)
    query = (query or '').strip()
    if not query:
        return []
    data = _get_json(
        f"{config.base_url.rstrip('/')}/search-v2",
        config.id,
        config.timeout_seconds,
        params={
            'q': query, 'country': country, 'language': 'en', 'page': 1, 'limit': limit,
            'sort_by': 'BEST_MATCH', 'product_condition': 'ANY',
        },
        headers={'X-RapidAPI-Key': config.api_key, 'X-RapidAPI-Host': REALSTORE_HOST},
    )
    items = _realstore_items(data)
    if not items:
        logger.warning(f"realstore returned no items for {query!r} (keys: {sorted(data) if isinstance(data, dict) else type(data).__name__})")
    return map_realstore_items(items, query)


PROVIDER_FETCHERS = {
    'dummyjson': lambda config, query, limit: fetch_dummyjson(config, query, limit or 100),
    'realstore': lambda config, query, limit: search_realstore(config, query, limit or 10),
}


def run_providers(session, settings, query='', limit=None, provider_ids=None):
    """Fetch from each configured provider and ingest its results; one outcome per provider."""
    outcomes = []
    for config in settings.providers:
        if provider_ids and config.id not in provider_ids:
            continue
        outcome = ProviderOutcome(provider_id=config.id, status='ok')
        outcomes.append(outcome)

        if not config.enabled:
            outcome.status = 'disabled'
            outcome.message = 'Provider is disabled'
            continue
        fetcher = PROVIDER_FETCHERS.get(config.id)
        if fetcher is None or not config.base_url:
            outcome.status = CONFIG_MISSING
            outcome.message = f"No fetcher or base URL configured for {config.id}"
            continue

        try:
            payload = fetcher(config, query, limit)
        except ProviderError as exc:
            outcome.status = exc.error_type
            outcome.message = str(exc)
            outcome.http_status = exc.http_status
            logger.error(f"Provider {config.id} failed ({exc.error_type}): {exc}")
            continue
        except Exception as exc:
            outcome.status = UNKNOWN
            outcome.message = str(exc)
            logger.exception(f"Provider {config.id} failed unexpectedly")
            continue

        outcome.fetched = len(payload)
        result = ingest_products(payload, session, settings=settings, source=config.id)
        outcome.ingested = result.count
        outcome.product_ids = result.product_ids
        logger.info(f"Provider {config.id}: fetched {outcome.fetched}, ingested {outcome.ingested}")
    return outcomes
