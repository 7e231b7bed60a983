"""
Ingestion orchestrator.

Feeds reach the catalog through one of three entry points:

* import_csv_feed / import_normalized_listings: affiliate and sheet feeds,
  matched row by row against the existing catalog, each row committed on its
  own so a bad row never takes the batch down with it.
* ingest_products: curated product payloads (seed data, provider results)
  that replace a product's listings and price history wholesale.
* add_manual_product / add_manual_listing: admin form data.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from pydantic import ValidationError

from config import get_settings
from core.repository import CatalogRepository
from core.schemas import (
    ImportRunStats,
    ImportSummary,
    IngestResult,
    ListingView,
    NormalizedRecord,
    ProductInput,
    RowError,
    SkipReason,
)
from etl.categories import infer_category_slug, infer_subcategory, is_valid_category_key
from etl.errors import ManualEntryError
from etl.matching import CatalogMatcher, ListingKey, is_blocked_store_or_url
from etl.parsers import (
    get_dialect,
    is_http_url,
    normalize_currency,
    normalize_products,
    parse_csv,
    parse_manual_listing,
    parse_manual_product,
)
from etl.stores import (
    UNKNOWN_BRAND,
    default_country_for_store,
    detect_brand_from_name,
    extract_store_from_url,
    normalize_store_name,
    store_logo_url,
)

logger = logging.getLogger(__name__)

MAX_REPORTED_ERRORS = 100


@dataclass
class ImportOptions:
    source: str = 'affiliate'
    default_country_code: Optional[str] = None
    start_row_number: int = 2
    validate_urls: bool = False
    affiliate_provider: Optional[str] = None
    affiliate_program: Optional[str] = None
    batch_size: Optional[int] = None


class RowRejected(Exception):
    """A record failed validation before anything was written."""

    def __init__(self, message, code, reason=SkipReason.INVALID_ROW):
        self.code = code
        self.reason = reason
        super().__init__(message)


def _now():
    return datetime.now(timezone.utc)


def _add_error(summary, row_number, message, code=None):
    if len(summary.errors) < MAX_REPORTED_ERRORS:
        summary.errors.append(RowError(row_number=row_number, message=message, code=code))


def _reject(summary, stats, row_number, exc, options):
    _add_error(summary, row_number, str(exc), exc.code)
    stats.errors += 1
    stats.record_skip(exc.reason, row_number - options.start_row_number, str(exc))


def _db_error_code(exc):
    orig = getattr(exc, 'orig', None)
    return getattr(orig, 'pgcode', None) or getattr(exc, 'code', None) or type(exc).__name__


def _category_for(name, description=None, category=None, campaign_name=None):
    explicit = category if is_valid_category_key(category) else None
    return infer_category_slug(
        name,
        description=description,
        campaign_name=campaign_name,
        explicit_category_slug=explicit,
        feed_category=category,
    )


def _kept_brand(product):
    if product is not None and product.brand and product.brand != UNKNOWN_BRAND:
        return product.brand
    return None


def _new_product_fields(record):
    category = _category_for(record.name, record.description, record.category, record.campaign_name)
    return {
        'display_name': record.display_name,
        'description': record.description,
        'brand': record.brand or detect_brand_from_name(record.name),
        'category': category,
        'subcategory': infer_subcategory(category, record.name, record.description) if category else None,
        'gtin': record.gtin,
        'image_url': record.image_url,
        'thumbnail_url': record.image_url,
    }


def _fill_missing_product_fields(repository, product, record):
    """Complete blank fields of a matched product; never overrides existing values."""
    updates = {}
    if not product.image_url and record.image_url:
        updates['image_url'] = record.image_url
        updates['thumbnail_url'] = product.thumbnail_url or record.image_url
    if not product.gtin and record.gtin:
        updates['gtin'] = record.gtin
    if not product.description and record.description:
        updates['description'] = record.description
    if (not product.brand or product.brand == UNKNOWN_BRAND) and record.brand:
        updates['brand'] = record.brand
    if not product.category:
        category = _category_for(record.name, record.description, record.category, record.campaign_name)
        if category:
            updates['category'] = category
    if updates:
        repository.update_product(product, **updates)


def _listing_fields(record, store_name, options, settings):
    fallback_country = options.default_country_code or settings.default_country_code
    return {
        'store_name': store_name,
        'store_logo_url': store_logo_url(record.store_id),
        'image_url': record.image_url,
        'price': record.price,
        'currency': normalize_currency(record.currency),
        'shipping_cost': record.shipping_cost,
        'delivery_days': record.delivery_days,
        'fast_delivery': record.fast_delivery,
        'in_stock': record.in_stock,
        'country_code': record.country_code or default_country_for_store(record.store_id, fallback_country),
        'rating': record.rating,
        'review_count': record.review_count,
        'affiliate_provider': record.affiliate_provider or options.affiliate_provider,
        'affiliate_program': record.affiliate_program or options.affiliate_program,
        'source': options.source,
    }


def _coerce_record(item, row_number):
    if isinstance(item, NormalizedRecord):
        record = item
    else:
        try:
            record = NormalizedRecord.model_validate(item)
        except ValidationError as exc:
            first = exc.errors()[0]
            field_name = '.'.join(str(p) for p in first['loc'])
            raise RowRejected(f"Invalid record ({field_name}): {first['msg']}", 'validation') from exc
    if record.row_number is None:
        record = record.model_copy(update={'row_number': row_number})
    return record


def _check_record(record, options):
    if not record.name:
        raise RowRejected('Missing product name', 'missing_name', SkipReason.MISSING_NAME)
    if not record.has_listing_data:
        return
    if normalize_currency(record.currency) is None:
        raise RowRejected(f"Invalid currency {record.currency!r}", 'invalid_currency', SkipReason.INVALID_CURRENCY)
    if options.validate_urls and not is_http_url(record.url):
        raise RowRejected(f"Invalid listing URL {record.url!r}", 'invalid_url')


def _resolve_store_name(record):
    name = normalize_store_name(record.store_id, record.store_name)
    return name or extract_store_from_url(record.url)


def _import_one(record, repository, matcher, summary, stats, options, settings):
    row_number = record.row_number
    try:
        _check_record(record, options)
    except RowRejected as exc:
        _reject(summary, stats, row_number, exc, options)
        return

    store_name = _resolve_store_name(record) if record.has_listing_data else None
    if record.has_listing_data and is_blocked_store_or_url(store_name, record.url, settings):
        summary.blocked_rows += 1
        logger.warning(f"Row {row_number}: rejected listing for blocked store {store_name!r} ({record.url})")
        return

    session = repository.session
    match = None
    first_touch_id = None
    listing_match = None
    try:
        match = matcher.match_product(record.name, product_id=record.product_id, defaults=_new_product_fields(record))
        if match.first_in_run:
            first_touch_id = match.product.id
        if not match.created:
            _fill_missing_product_fields(repository, match.product, record)

        if record.has_listing_data:
            key = ListingKey.from_parts(match.product.id, store_name, record.url)
            fields = _listing_fields(record, store_name, options, settings)
            listing_match = matcher.upsert_listing(key, fields)
            if listing_match.created or listing_match.price_changed:
                repository.add_price_point(
                    match.product.id, _now(), record.price, fields['currency'], store_name=store_name
                )
        session.commit()
    except Exception as exc:
        session.rollback()
        matcher.reset_cache(first_touch_id)
        summary.failed_rows += 1
        stats.errors += 1
        code = _db_error_code(exc)
        _add_error(summary, row_number, str(exc).splitlines()[0] if str(exc) else type(exc).__name__, code)
        logger.error(f"Row {row_number}: import failed ({code}): {exc}")
        return

    if match.first_in_run:
        if match.created:
            summary.products_created += 1
        else:
            summary.products_matched += 1
        stats.products_upserted += 1

    if listing_match is None:
        summary.product_only_rows += 1
        return
    summary.listing_rows += 1
    stats.listings_upserted += 1
    if listing_match.created:
        summary.listings_created += 1
    else:
        summary.listings_updated += 1


def import_normalized_listings(records, session, options=None, settings=None, stats=None):
    """
    Match and upsert a batch of normalized records.

    ``records`` is a list (of NormalizedRecord or dicts) or a ``{"products": [...]}``
    wrapper. Returns an ImportSummary; row problems are reported in it, never raised.
    Running the same batch twice creates nothing new the second time.
    """
    settings = settings or get_settings()
    options = options or ImportOptions()
    stats = stats or ImportRunStats(provider=options.source)
    batch_size = options.batch_size or settings.import_batch_size

    items = records if isinstance(records, list) else normalize_products(records)
    repository = CatalogRepository(session)
    matcher = CatalogMatcher(repository)
    summary = ImportSummary()

    for start in range(0, len(items), batch_size):
        batch = items[start:start + batch_size]
        stats.batches += 1
        logger.info(f"Importing batch {stats.batches} ({start + 1}-{start + len(batch)} of {len(items)})")
        for offset, item in enumerate(batch):
            fallback_row = options.start_row_number + start + offset
            try:
                record = _coerce_record(item, fallback_row)
            except RowRejected as exc:
                _reject(summary, stats, fallback_row, exc, options)
                continue
            _import_one(record, repository, matcher, summary, stats, options, settings)

    summary.stats = stats.to_dict()
    logger.info(
        f"Import finished: {summary.products_created} products created, {summary.products_matched} matched, "
        f"{summary.listings_created} listings created, {summary.listings_updated} updated, "
        f"{summary.product_only_rows} product-only rows, {summary.blocked_rows} blocked, "
        f"{summary.failed_rows} failed"
    )
    return summary


def import_csv_feed(content, provider, session, options=None, settings=None):
    """
    Parse a CSV feed and import its rows.

    Structural problems (empty file, missing required columns) raise before
    anything is written; everything else ends up in the returned summary.
    """
    dialect = get_dialect(provider)
    stats = ImportRunStats(provider=dialect.name)
    parsed = parse_csv(content, dialect.name, stats=stats).raise_for_header()
    options = options or ImportOptions(source=dialect.source, affiliate_provider=dialect.affiliate_provider)
    summary = import_normalized_listings(parsed.rows, session, options=options, settings=settings, stats=stats)
    summary.skipped_missing_fields = parsed.skipped_missing_fields
    return summary


# ---------------------------------------------------------------------------
# Curated payloads
# ---------------------------------------------------------------------------

def _replace_listings(repository, product, listings, settings, source):
    repository.delete_listings(product.id)
    seen = set()
    for item in listings:
        store_name = normalize_store_name(item.store_id, item.store_name)
        if is_blocked_store_or_url(store_name, item.url, settings):
            logger.warning(f"Skipping blocked listing {store_name!r} for product {product.id}")
            continue
        key = ListingKey.from_parts(product.id, store_name, item.url)
        if key in seen:
            continue
        seen.add(key)
        repository.create_listing(
            key,
            store_name=store_name,
            store_logo_url=store_logo_url(item.store_id),
            image_url=item.image_url,
            price=item.price,
            currency=item.currency.upper(),
            shipping_cost=item.shipping_cost,
            delivery_days=item.delivery_days,
            fast_delivery=item.fast_delivery,
            in_stock=item.in_stock,
            country_code=item.country_code or default_country_for_store(item.store_id, settings.default_country_code),
            location=item.location,
            rating=item.rating,
            review_count=item.review_count,
            affiliate_provider=item.affiliate_provider,
            source=source,
            price_last_seen_at=_now(),
        )
        if not product.image_url and item.image_url:
            repository.update_product(product, image_url=item.image_url)


def _replace_price_history(repository, product, points):
    repository.delete_price_history(product.id)
    for point in points:
        date = point.resolved_date()
        price = point.resolved_price()
        if date is None or price is None:
            logger.warning(f"Skipping price point without a usable date or price for product {product.id}")
            continue
        repository.add_price_point(product.id, date, price, point.currency.upper(), store_name=point.store_name)


def _ingest_product(repository, item, settings, source):
    product = repository.get_product(item.id) if item.id else repository.find_product_by_name(item.name)
    # A stored canonical category is kept unless the payload names one.
    existing = product.category if product is not None else None
    category = _category_for(item.name, item.description, item.category or existing)
    fields = {
        'name': item.name,
        'display_name': item.display_name,
        'description': item.description,
        'brand': item.brand or _kept_brand(product) or detect_brand_from_name(item.name),
        'category': category,
        'subcategory': infer_subcategory(category, item.name, item.description) if category else None,
        'gtin': item.gtin,
        'image_url': item.image_url,
        'thumbnail_url': item.thumbnail_url or item.image_url,
    }
    if product is None:
        if item.id:
            fields['id'] = item.id
        product = repository.create_product(**fields)
    else:
        repository.update_product(product, **{k: v for k, v in fields.items() if v is not None})

    if item.listings is not None:
        _replace_listings(repository, product, item.listings, settings, source)
    if item.price_history is not None:
        _replace_price_history(repository, product, item.price_history)
    return product.id


def ingest_products(payload, session, settings=None, source='ingest'):
    """
    Upsert curated products with their listings and price history.

    Accepts a list or ``{"products": [...]}`` (or the JSON text of either).
    Products that fail validation or storage are logged and skipped.
    """
    settings = settings or get_settings()
    repository = CatalogRepository(session)
    result = IngestResult()

    for position, raw in enumerate(normalize_products(payload)):
        try:
            item = ProductInput.model_validate(raw)
        except ValidationError as exc:
            logger.warning(f"Skipping product #{position}: {exc.errors()[0]['msg']}")
            continue
        try:
            product_id = _ingest_product(repository, item, settings, source)
            session.commit()
        except Exception as exc:
            session.rollback()
            logger.error(f"Failed to ingest product {item.id or item.name!r}: {exc}")
            continue
        result.count += 1
        result.product_ids.append(product_id)

    logger.info(f"Ingested {result.count} products from {source}")
    return result


# ---------------------------------------------------------------------------
# Admin form data
# ---------------------------------------------------------------------------

def add_manual_product(session, data):
    form = parse_manual_product(data)
    repository = CatalogRepository(session)
    product = repository.get_product(form.id) if form.id else repository.find_product_by_name(form.name)
    existing = product.category if product is not None else None
    fields = {
        'display_name': form.display_name,
        'description': form.description,
        'brand': form.brand or _kept_brand(product) or detect_brand_from_name(form.name),
        'category': _category_for(form.name, form.description, form.category or existing),
        'gtin': form.gtin,
        'image_url': form.image_url,
        'thumbnail_url': form.image_url,
    }
    if product is None:
        product = repository.create_product(name=form.name, **({'id': form.id} if form.id else {}), **fields)
    else:
        repository.update_product(product, **{k: v for k, v in fields.items() if v is not None})
    session.commit()
    logger.info(f"Saved manual product {product.id} ({product.name})")
    return product.id


def add_manual_listing(session, product_id, data, settings=None):
    settings = settings or get_settings()
    form = parse_manual_listing(data)
    repository = CatalogRepository(session)
    product = repository.get_product(product_id)
    if product is None:
        raise ManualEntryError({'productId': f"product {product_id!r} not found"})

    store_name = normalize_store_name(form.store_id, form.store_name)
    if is_blocked_store_or_url(store_name, form.url, settings):
        raise ManualEntryError({'storeName': f"listings from {store_name!r} are not accepted"})

    matcher = CatalogMatcher(repository)
    key = ListingKey.from_parts(product.id, store_name, form.url)
    fields = {
        'store_name': store_name,
        'store_logo_url': store_logo_url(form.store_id),
        'price': form.price,
        'currency': form.currency,
        'shipping_cost': form.shipping_cost,
        'delivery_days': form.delivery_days,
        'fast_delivery': form.fast_delivery,
        'in_stock': form.in_stock,
        'country_code': (form.country_code or '').upper()
        or default_country_for_store(form.store_id, settings.default_country_code),
        'location': form.location,
        'source': 'manual',
    }
    match = matcher.upsert_listing(key, fields)
    if match.created or match.price_changed:
        repository.add_price_point(product.id, _now(), form.price, form.currency, store_name=store_name)
    session.commit()
    return ListingView.model_validate(match.listing)
