"""
Feed parsers: turn affiliate CSV exports, sheet exports, JSON payloads and
admin form data into typed records.

Each CSV dialect is a column alias table plus a few defaults. Rows that cannot
become a record are skipped with a typed reason and counted in the run stats;
only structural problems (empty file, missing required columns, malformed
JSON) raise.
"""
import io
import json
import logging
import math
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple
from urllib.parse import urlparse

import pandas as pd
from bs4 import BeautifulSoup
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel
from slugify import slugify

from core.schemas import ImportRunStats, NormalizedRecord, SkipReason
from etl.categories import is_valid_category_key
from etl.errors import CsvHeaderError, EmptyFeedError, ManualEntryError, PayloadFormatError
from etl.stores import (
    extract_store_from_url,
    is_valid_store_id,
    normalize_store_name,
    store_id_for_domain,
)

logger = logging.getLogger(__name__)

OUT_OF_STOCK_PHRASES = ['out of stock', 'indisponibil', 'stoc epuizat', 'nu este in stoc', 'sold out', 'epuizat']
OUT_OF_STOCK_TOKENS = {'0', 'false', 'no', 'n', 'nu'}

TRUE_WORDS = {'true', '1', 'yes', 'y', 'da'}
FALSE_WORDS = {'false', '0', 'no', 'n', 'nu'}

CURRENCY_PATTERN = re.compile(r'^[A-Z]{3,10}$')


@dataclass(frozen=True)
class FeedDialect:
    name: str
    column_aliases: Dict[str, str]
    # (label shown in errors, fields of which at least one column must exist)
    required_columns: Tuple[Tuple[str, Tuple[str, ...]], ...]
    url_requirement: str = 'any'
    default_currency: Optional[str] = None
    affiliate_provider: Optional[str] = None
    source: str = 'affiliate'
    allow_product_only: bool = False


_COMMON_ALIASES = {
    'image_url': 'image_url', 'image': 'image_url', 'img': 'image_url', 'imagine': 'image_url',
    'poza': 'image_url', 'picture': 'image_url', 'product_image': 'image_url',
    'price': 'price', 'pret': 'price', 'current_price': 'price', 'price_with_vat': 'price',
    'pret_cu_tva': 'price', 'final_price': 'price',
    'currency': 'currency', 'moneda': 'currency', 'valuta': 'currency',
    'category': 'category', 'categorie': 'category', 'product_category': 'category',
    'gtin': 'gtin', 'ean': 'gtin', 'ean13': 'gtin', 'barcode': 'gtin',
    'availability': 'availability', 'disponibilitate': 'availability', 'stock': 'availability',
    'in_stock': 'availability', 'stoc': 'availability',
    'brand': 'brand', 'producator': 'brand', 'manufacturer': 'brand',
    'description': 'description', 'descriere': 'description',
}

PROFITSHARE = FeedDialect(
    name='profitshare',
    column_aliases={
        'product_name': 'name', 'name': 'name', 'title': 'name', 'product_title': 'name',
        'denumire': 'name', 'denumire_produs': 'name',
        'product_url': 'product_url', 'url': 'product_url', 'link': 'product_url',
        'product_link': 'product_url', 'link_produs': 'product_url',
        'affiliate_link': 'affiliate_url', 'affiliate_url': 'affiliate_url', 'aff_link': 'affiliate_url',
        'profitshare_link': 'affiliate_url', 'link_afiliat': 'affiliate_url', 'tracking_link': 'affiliate_url',
        'campaign': 'affiliate_program', 'campaign_name': 'affiliate_program', 'advertiser': 'affiliate_program',
        **_COMMON_ALIASES,
    },
    required_columns=(
        ('name', ('name',)),
        ('price', ('price',)),
        ('product_url or affiliate_url', ('product_url', 'affiliate_url')),
    ),
    default_currency='RON',
    affiliate_provider='profitshare',
)

TWO_PERFORMANT = FeedDialect(
    name='2performant',
    column_aliases={
        'name': 'name', 'product_name': 'name', 'title': 'name', 'product_title': 'name', 'product': 'name',
        'deeplink': 'affiliate_url', 'tracking_link': 'affiliate_url', 'url': 'affiliate_url',
        'link': 'affiliate_url', 'product_url': 'affiliate_url', 'affiliate_link': 'affiliate_url',
        'merchant': 'store_name', 'store': 'store_name', 'store_name': 'store_name', 'merchant_name': 'store_name',
        'program_name': 'affiliate_program', 'program': 'affiliate_program', 'campaign': 'affiliate_program',
        'campaign_name': 'affiliate_program',
        **_COMMON_ALIASES,
    },
    required_columns=(
        ('name', ('name',)),
        ('price', ('price',)),
        ('deeplink', ('affiliate_url',)),
    ),
    url_requirement='affiliate',
    default_currency='RON',
    affiliate_provider='2performant',
)

SHEET = FeedDialect(
    name='sheet',
    column_aliases={
        'product_title': 'name', 'brand': 'brand', 'category': 'category', 'store_id': 'store_id',
        'store_name': 'store_name', 'listing_url': 'product_url', 'price': 'price', 'currency': 'currency',
        'gtin': 'gtin', 'delivery_days': 'delivery_days', 'fast_delivery': 'fast_delivery',
        'in_stock': 'availability', 'country_code': 'country_code', 'description': 'description',
        'image_url': 'image_url', 'shipping_cost': 'shipping_cost',
    },
    required_columns=tuple(
        (col, (fld,)) for col, fld in [
            ('product_title', 'name'), ('brand', 'brand'), ('category', 'category'), ('store_id', 'store_id'),
            ('store_name', 'store_name'), ('listing_url', 'product_url'), ('price', 'price'),
            ('currency', 'currency'),
        ]
    ),
    source='sheet',
    allow_product_only=True,
)

FEED_DIALECTS = {d.name: d for d in (PROFITSHARE, TWO_PERFORMANT, SHEET)}


def is_valid_provider(provider):
    return provider in FEED_DIALECTS


def get_dialect(provider):
    try:
        return FEED_DIALECTS[provider]
    except KeyError:
        raise ValueError(f"Unknown feed provider '{provider}'. Expected one of: {', '.join(FEED_DIALECTS)}")


# ---------------------------------------------------------------------------
# Value parsers
# ---------------------------------------------------------------------------

def normalize_header(header):
    return slugify(str(header), separator='_')


def parse_price(value):
    """
    Positive finite price from a cell, or None.

    Handles "1.234,56" and "1,234.56" as well as currency symbols around the number.
    """
    if value is None:
        return None
    if isinstance(value, (int, float)):
        number = float(value)
        return number if math.isfinite(number) and number > 0 else None

    cleaned = re.sub(r'[^\d.,\-]', '', str(value).strip())
    if not cleaned:
        return None

    last_comma = cleaned.rfind(',')
    last_dot = cleaned.rfind('.')
    if last_comma > last_dot and len(cleaned) - last_comma <= 4:
        cleaned = cleaned.replace('.', '').replace(',', '.')
    else:
        cleaned = cleaned.replace(',', '')

    try:
        number = float(cleaned)
    except ValueError:
        return None
    return number if math.isfinite(number) and number > 0 else None


def parse_availability(text):
    """In-stock flag for free availability text; unknown wording counts as in stock."""
    if text is None:
        return True
    lowered = str(text).strip().lower()
    if not lowered:
        return True
    if lowered in OUT_OF_STOCK_TOKENS:
        return False
    return not any(phrase in lowered for phrase in OUT_OF_STOCK_PHRASES)


def parse_boolean_like(value):
    if value is None:
        return None
    if isinstance(value, bool):
        return value
    lowered = str(value).strip().lower()
    if lowered in TRUE_WORDS:
        return True
    if lowered in FALSE_WORDS:
        return False
    return None


def parse_number_like(value):
    if value is None or str(value).strip() == '':
        return None
    try:
        number = float(str(value).strip().replace(',', '.'))
    except ValueError:
        return None
    return number if math.isfinite(number) else None


def normalize_currency(value, default=None):
    code = (str(value).strip().upper() if value is not None else '') or (default or '')
    return code if CURRENCY_PATTERN.match(code) else None


def is_http_url(url):
    if not url:
        return False
    try:
        parsed = urlparse(str(url).strip())
    except ValueError:
        return False
    return parsed.scheme in ('http', 'https') and bool(parsed.netloc)


def clean_html(text):
    if not text:
        return None
    if '<' not in text:
        return text.strip() or None
    cleaned = BeautifulSoup(text, 'html.parser').get_text(separator=' ', strip=True)
    return cleaned or None


# ---------------------------------------------------------------------------
# CSV feeds
# ---------------------------------------------------------------------------

@dataclass
class CsvParseResult:
    provider: str
    rows: List[NormalizedRecord] = field(default_factory=list)
    skipped_missing_fields: int = 0
    header_error: Optional[str] = None
    total_data_rows: int = 0
    stats: Optional[ImportRunStats] = None
    missing_columns: List[str] = field(default_factory=list)

    def raise_for_header(self):
        if self.header_error:
            raise CsvHeaderError(self.missing_columns, provider=self.provider)
        return self


class _RowSkipped(Exception):
    def __init__(self, reason, details=None):
        self.reason = reason
        self.details = details
        super().__init__(details or reason.value)


def _sniff_delimiter(text):
    header_line = text.split('\n', 1)[0]
    return ';' if header_line.count(';') > header_line.count(',') else ','


def read_feed_frame(content):
    """
    Load CSV text into an all-string DataFrame.

    Returns the frame plus the field lists of lines that had more cells than
    the header; pandas drops those lines from the frame.
    """
    text = str(content or '').lstrip('\ufeff')
    if not text.strip():
        raise EmptyFeedError()
    bad_lines = []

    def _collect_bad_line(fields):
        bad_lines.append(fields)
        return None

    frame = pd.read_csv(
        io.StringIO(text),
        sep=_sniff_delimiter(text),
        dtype=str,
        keep_default_na=False,
        skip_blank_lines=True,
        engine='python',
        on_bad_lines=_collect_bad_line,
    )
    frame = frame.fillna('')
    if not frame.empty:
        blank = frame.apply(lambda row: all(str(v).strip() == '' for v in row), axis=1)
        frame = frame[~blank].reset_index(drop=True)
    return frame, bad_lines


def _header_map(columns, dialect):
    mapping = {}
    for column in columns:
        target = dialect.column_aliases.get(normalize_header(column))
        if target and target not in mapping.values():
            mapping[column] = target
    return mapping


def _missing_columns(header_map, dialect):
    present = set(header_map.values())
    return [label for label, fields in dialect.required_columns if not present.intersection(fields)]


def _row_to_record(fields, dialect, index):
    name = fields.get('name', '')
    if not name:
        raise _RowSkipped(SkipReason.MISSING_NAME)

    product_url = fields.get('product_url') or None
    affiliate_url = fields.get('affiliate_url') or None
    listing_url = affiliate_url or product_url

    listing_capable = True
    if dialect.url_requirement == 'affiliate' and not affiliate_url:
        if not dialect.allow_product_only:
            raise _RowSkipped(SkipReason.MISSING_AFFILIATE_URL)
        listing_capable = False
    if not listing_url:
        if not dialect.allow_product_only:
            raise _RowSkipped(SkipReason.MISSING_ANY_URL)
        listing_capable = False

    price = parse_price(fields.get('price'))
    if price is None:
        if not dialect.allow_product_only:
            raise _RowSkipped(SkipReason.INVALID_PRICE, f"price={fields.get('price', '')!r}")
        listing_capable = False

    currency = normalize_currency(fields.get('currency'), dialect.default_currency)
    if listing_capable and currency is None:
        raise _RowSkipped(SkipReason.INVALID_CURRENCY, f"currency={fields.get('currency', '')!r}")

    store_id = fields.get('store_id') or None
    if store_id and not is_valid_store_id(store_id):
        raise _RowSkipped(SkipReason.INVALID_ROW, f"invalid store_id {store_id!r}")
    url_for_store = product_url or affiliate_url
    if not store_id and url_for_store:
        store_id = store_id_for_domain(url_for_store)
    store_name = fields.get('store_name') or (extract_store_from_url(url_for_store) if url_for_store else None)
    if store_name:
        store_name = normalize_store_name(store_id, store_name)

    delivery_days = parse_number_like(fields.get('delivery_days'))
    program = fields.get('affiliate_program') or None

    return NormalizedRecord(
        row_number=index + 2,
        name=name,
        description=clean_html(fields.get('description')),
        brand=fields.get('brand') or None,
        category=fields.get('category') or None,
        gtin=fields.get('gtin') or None,
        image_url=fields.get('image_url') or None,
        store_id=store_id,
        store_name=store_name,
        url=listing_url if listing_capable else None,
        price=price if listing_capable else None,
        currency=currency,
        shipping_cost=parse_number_like(fields.get('shipping_cost')),
        delivery_days=int(delivery_days) if delivery_days is not None else None,
        fast_delivery=bool(parse_boolean_like(fields.get('fast_delivery'))),
        in_stock=parse_availability(fields.get('availability')),
        country_code=(fields.get('country_code') or '').upper() or None,
        affiliate_provider=dialect.affiliate_provider,
        affiliate_program=program,
        campaign_name=program,
    )


def parse_csv(content, provider='profitshare', stats=None):
    """
    Parse a CSV feed in the given dialect.

    Raises EmptyFeedError for empty content. Missing required columns are
    reported through ``header_error`` (see ``raise_for_header``); a header
    with no data rows parses to an empty result.
    """
    dialect = get_dialect(provider)
    stats = stats or ImportRunStats(provider=dialect.name)
    frame, bad_lines = read_feed_frame(content)

    header_map = _header_map(frame.columns, dialect)
    result = CsvParseResult(provider=dialect.name, stats=stats)
    result.total_data_rows = len(frame) + len(bad_lines)

    missing = _missing_columns(header_map, dialect)
    if missing:
        result.missing_columns = missing
        result.header_error = f"Missing required columns: {', '.join(missing)}"
        logger.warning(f"{dialect.name} feed rejected: {result.header_error}")
        return result

    for fields in bad_lines:
        stats.total_rows_seen += 1
        stats.record_skip(
            SkipReason.INVALID_ROW,
            None,
            f"{len(fields)} cells for {len(frame.columns)} columns: {', '.join(fields)[:120]}",
        )

    seen_keys = set()
    for index, raw in enumerate(frame.to_dict(orient='records')):
        stats.total_rows_seen += 1
        fields = {target: str(raw[column]).strip() for column, target in header_map.items()}
        try:
            record = _row_to_record(fields, dialect, index)
        except _RowSkipped as skip:
            stats.record_skip(skip.reason, index, skip.details)
            continue
        except ValidationError as exc:
            stats.record_skip(SkipReason.INVALID_ROW, index, str(exc.errors()[0].get('msg')))
            continue
        except (ValueError, TypeError) as exc:
            logger.warning(f"Row {index + 2} of {dialect.name} feed could not be parsed: {exc}")
            stats.record_skip(SkipReason.OTHER, index, str(exc))
            continue

        stats.parsed_rows += 1
        if record.url:
            key = (record.name, (record.store_name or '').casefold(), record.url)
            if key in seen_keys:
                stats.record_skip(SkipReason.DEDUPED_DUPLICATE, index, f"{record.name} @ {record.store_name}")
                continue
            seen_keys.add(key)

        stats.normalized_rows += 1
        result.rows.append(record)

    result.skipped_missing_fields = stats.skipped_rows
    logger.info(
        f"Parsed {dialect.name} feed: {len(result.rows)} rows kept, {stats.skipped_rows} skipped "
        f"{stats.skipped_by_reason}"
    )
    return result


# ---------------------------------------------------------------------------
# JSON payloads
# ---------------------------------------------------------------------------

def normalize_products(payload):
    """
    Unwrap a product payload into a list of product dicts.

    Accepts a bare list, a ``{"products": [...]}`` wrapper, or the JSON text of
    either. Anything else is a structural error.
    """
    if isinstance(payload, (str, bytes)):
        try:
            payload = json.loads(payload)
        except json.JSONDecodeError as exc:
            raise PayloadFormatError(f"Malformed JSON payload: {exc.msg} (line {exc.lineno})") from exc

    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict):
        products = payload.get('products')
        if products is None:
            return []
        if isinstance(products, list):
            return products
        raise PayloadFormatError("'products' must be a list")
    raise PayloadFormatError(f"Expected a list of products or an object with 'products', got {type(payload).__name__}")


# ---------------------------------------------------------------------------
# Admin form data
# ---------------------------------------------------------------------------

class _ManualForm(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra='ignore',
                              str_strip_whitespace=True)


class ManualProductForm(_ManualForm):
    id: Optional[str] = None
    name: str = Field(min_length=1)
    display_name: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    brand: Optional[str] = None
    gtin: Optional[str] = None
    image_url: Optional[str] = None

    @field_validator('category')
    @classmethod
    def _known_category(cls, value):
        if value and not is_valid_category_key(value):
            raise ValueError(f"unknown category '{value}'")
        return value or None


class ManualListingForm(_ManualForm):
    store_name: str = Field(min_length=1)
    store_id: Optional[str] = None
    url: str = Field(min_length=1)
    price: float = Field(ge=0)
    currency: str = Field(min_length=1)
    shipping_cost: Optional[float] = Field(default=None, ge=0)
    delivery_days: Optional[int] = Field(default=None, ge=0)
    fast_delivery: bool = False
    in_stock: bool = True
    country_code: Optional[str] = None
    location: Optional[str] = None

    @field_validator('url')
    @classmethod
    def _absolute_url(cls, value):
        if not is_http_url(value):
            raise ValueError('must be an absolute http(s) URL')
        return value

    @field_validator('price')
    @classmethod
    def _finite(cls, value):
        if not math.isfinite(value):
            raise ValueError('must be a finite number')
        return value

    @field_validator('currency')
    @classmethod
    def _currency(cls, value):
        code = normalize_currency(value)
        if code is None:
            raise ValueError('must be a currency code such as RON or EUR')
        return code


def _parse_form(form_cls, data):
    try:
        return form_cls.model_validate(data)
    except ValidationError as exc:
        errors = {'.'.join(str(p) for p in err['loc']) or 'form': err['msg'] for err in exc.errors()}
        raise ManualEntryError(errors) from exc


def parse_manual_product(data):
    return _parse_form(ManualProductForm, data)


def parse_manual_listing(data):
    return _parse_form(ManualListingForm, data)
