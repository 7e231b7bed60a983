import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from core.models import Product

logger = logging.getLogger(__name__)

DEFAULT_BLOCKED_STORE_PATTERNS = ('emag',)
DEFAULT_BLOCKED_URL_PATTERNS = ('emag.ro',)

# Offer state a re-seen listing always takes from the incoming row.
MUTABLE_LISTING_FIELDS = frozenset([
    'price', 'currency', 'in_stock', 'shipping_cost', 'delivery_days', 'fast_delivery',
    'affiliate_provider', 'affiliate_program',
])
# Set once when the listing is created.
CREATION_ONLY_LISTING_FIELDS = frozenset(['source', 'store_name'])


def store_key_for(store_name):
    """Case-folded, whitespace-collapsed store name used in listing identity."""
    return ' '.join(str(store_name or '').split()).casefold()


@dataclass(frozen=True)
class ListingKey:
    """Identity of a listing: same product, same store (case-insensitive), same URL."""
    product_id: str
    store_key: str
    url: str

    @classmethod
    def from_parts(cls, product_id, store_name, url):
        return cls(product_id, store_key_for(store_name), str(url).strip())


def is_blocked_store_or_url(store_name, url, settings=None):
    store_patterns = settings.blocked_store_patterns if settings else DEFAULT_BLOCKED_STORE_PATTERNS
    url_patterns = settings.blocked_url_patterns if settings else DEFAULT_BLOCKED_URL_PATTERNS
    store = (store_name or '').lower()
    link = (url or '').lower()
    return any(p in store for p in store_patterns) or any(p in link for p in url_patterns)


@dataclass
class ProductMatch:
    product: Product
    created: bool
    # True only the first time this product is touched in the current run.
    first_in_run: bool


@dataclass
class ListingMatch:
    listing: object
    created: bool
    price_changed: bool
    previous_price: Optional[float] = None


class CatalogMatcher:
    """
    Decides whether incoming data refers to an existing product or listing.

    Products match by explicit id, otherwise by exact name. Results are cached
    for the lifetime of the matcher (one import run) so repeated rows for the
    same new product create it once.
    """

    def __init__(self, repository):
        self.repository = repository
        self._by_id = {}
        self._by_name = {}
        self._touched = set()

    def reset_cache(self, product_id=None):
        """Drop cached lookups after a rollback; the product is no longer counted as seen."""
        self._by_id.clear()
        self._by_name.clear()
        if product_id:
            self._touched.discard(product_id)

    def _remember(self, product):
        self._by_id[product.id] = product
        self._by_name.setdefault(product.name, product)

    def _first_touch(self, product):
        if product.id in self._touched:
            return False
        self._touched.add(product.id)
        return True

    def find_product(self, product_id=None, name=None):
        if product_id:
            product = self._by_id.get(product_id) or self.repository.get_product(product_id)
        else:
            product = self._by_name.get(name) or self.repository.find_product_by_name(name)
        if product is not None:
            self._remember(product)
        return product

    def match_product(self, name, product_id=None, defaults=None):
        product = self.find_product(product_id=product_id, name=name)
        if product is not None:
            return ProductMatch(product, created=False, first_in_run=self._first_touch(product))

        fields = dict(defaults or {})
        fields['name'] = name
        if product_id:
            fields['id'] = product_id
        product = self.repository.create_product(**fields)
        self._remember(product)
        logger.debug(f"Created product {product.id} ({name})")
        return ProductMatch(product, created=True, first_in_run=self._first_touch(product))

    def upsert_listing(self, key, fields, seen_at=None):
        seen_at = seen_at or datetime.now(timezone.utc)
        listing = self.repository.find_listing(key)
        if listing is None:
            listing = self.repository.create_listing(key, price_last_seen_at=seen_at, **fields)
            return ListingMatch(listing, created=True, price_changed=False)

        previous = listing.price
        price_changed = previous is None or round(float(previous), 2) != round(float(fields['price']), 2)
        updates = {
            name: value for name, value in fields.items()
            if name in MUTABLE_LISTING_FIELDS
            or (name not in CREATION_ONLY_LISTING_FIELDS and value is not None)
        }
        self.repository.update_listing(listing, price_last_seen_at=seen_at, **updates)
        return ListingMatch(listing, created=False, price_changed=price_changed, previous_price=previous)
