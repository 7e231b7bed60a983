import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

MAX_SKIP_SAMPLES = 20


class SkipReason(str, Enum):
    MISSING_NAME = 'missing_name'
    MISSING_AFFILIATE_URL = 'missing_affiliate_url'
    MISSING_ANY_URL = 'missing_any_url'
    INVALID_PRICE = 'invalid_price'
    INVALID_CURRENCY = 'invalid_currency'
    INVALID_ROW = 'invalid_row'
    DEDUPED_DUPLICATE = 'deduped_duplicate'
    OTHER = 'other'


@dataclass
class SkipSample:
    reason: SkipReason
    row_index: Optional[int] = None
    details: Optional[str] = None


@dataclass
class ImportRunStats:
    """Counters for a single import run. Lives only for the duration of the run."""
    provider: str
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    total_rows_seen: int = 0
    parsed_rows: int = 0
    normalized_rows: int = 0
    skipped_rows: int = 0
    skipped_by_reason: Dict[str, int] = field(default_factory=dict)
    products_upserted: int = 0
    listings_upserted: int = 0
    batches: int = 0
    errors: int = 0
    sample_skip_examples: List[SkipSample] = field(default_factory=list)

    def record_skip(self, reason, row_index=None, details=None):
        reason = SkipReason(reason)
        self.skipped_rows += 1
        self.skipped_by_reason[reason.value] = self.skipped_by_reason.get(reason.value, 0) + 1
        if len(self.sample_skip_examples) < MAX_SKIP_SAMPLES:
            self.sample_skip_examples.append(SkipSample(reason, row_index, details))

    def to_dict(self):
        return {
            'provider': self.provider,
            'started_at': self.started_at.isoformat(),
            'total_rows_seen': self.total_rows_seen,
            'parsed_rows': self.parsed_rows,
            'normalized_rows': self.normalized_rows,
            'skipped_rows': self.skipped_rows,
            'skipped_by_reason': dict(self.skipped_by_reason),
            'products_upserted': self.products_upserted,
            'listings_upserted': self.listings_upserted,
            'batches': self.batches,
            'errors': self.errors,
            'sample_skip_examples': [
                {'reason': s.reason.value, 'row_index': s.row_index, 'details': s.details}
                for s in self.sample_skip_examples
            ],
        }


class _CamelModel(BaseModel):
    # Feeds and admin payloads arrive in camelCase; python code uses snake_case.
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra='ignore')


def _finite_non_negative(value):
    if value is None:
        return None
    value = float(value)
    if math.isnan(value) or math.isinf(value) or value < 0:
        raise ValueError('price must be a finite non-negative number')
    return value


class NormalizedRecord(_CamelModel):
    """A single feed row after dialect parsing, ready for matching and upsert."""
    row_number: Optional[int] = None
    product_id: Optional[str] = None
    name: str = ''
    display_name: Optional[str] = None
    description: Optional[str] = None
    brand: Optional[str] = None
    category: Optional[str] = None
    gtin: Optional[str] = None
    image_url: Optional[str] = None
    store_id: Optional[str] = None
    store_name: Optional[str] = None
    url: Optional[str] = None
    price: Optional[float] = None
    currency: Optional[str] = None
    shipping_cost: Optional[float] = None
    delivery_days: Optional[int] = None
    fast_delivery: bool = False
    in_stock: bool = True
    country_code: Optional[str] = None
    rating: Optional[float] = None
    review_count: Optional[int] = None
    affiliate_provider: Optional[str] = None
    affiliate_program: Optional[str] = None
    campaign_name: Optional[str] = None

    @field_validator('name', mode='before')
    @classmethod
    def _strip_name(cls, value):
        return '' if value is None else str(value).strip()

    @field_validator('price', 'shipping_cost')
    @classmethod
    def _check_price(cls, value):
        return _finite_non_negative(value)

    @property
    def has_listing_data(self) -> bool:
        return bool(self.url) and self.price is not None and self.price > 0


class ListingInput(_CamelModel):
    store_name: str = Field(min_length=1)
    store_id: Optional[str] = None
    url: str = Field(min_length=1)
    price: float
    currency: str = 'USD'
    shipping_cost: Optional[float] = None
    delivery_days: Optional[int] = None
    fast_delivery: bool = False
    in_stock: bool = True
    country_code: Optional[str] = None
    location: Optional[str] = None
    image_url: Optional[str] = None
    rating: Optional[float] = None
    review_count: Optional[int] = None
    affiliate_provider: Optional[str] = None

    @field_validator('price', 'shipping_cost')
    @classmethod
    def _check_price(cls, value):
        return _finite_non_negative(value)


class PriceHistoryInput(_CamelModel):
    date: Optional[str] = None
    month: Optional[str] = None
    price: Optional[float] = None
    average_price: Optional[float] = None
    currency: str = 'USD'
    store_name: Optional[str] = None

    def resolved_price(self):
        return self.average_price if self.average_price is not None else self.price

    def resolved_date(self):
        """ISO date/datetime, or a YYYY-MM month pinned to the 1st at 00:00 UTC; None if unparseable."""
        try:
            if self.date:
                parsed = datetime.fromisoformat(self.date.replace('Z', '+00:00'))
                return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
            if self.month:
                year, month = self.month.strip().split('-')[:2]
                return datetime(int(year), int(month), 1, tzinfo=timezone.utc)
        except ValueError:
            return None
        return None


class ProductInput(_CamelModel):
    id: Optional[str] = None
    name: str = Field(min_length=1)
    display_name: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    brand: Optional[str] = None
    gtin: Optional[str] = None
    image_url: Optional[str] = None
    thumbnail_url: Optional[str] = None
    listings: Optional[List[ListingInput]] = None
    price_history: Optional[List[PriceHistoryInput]] = None

    @field_validator('name', mode='before')
    @classmethod
    def _strip_name(cls, value):
        return value.strip() if isinstance(value, str) else value


class ListingView(BaseModel):
    """Typed read model of a stored listing."""
    model_config = ConfigDict(from_attributes=True)

    id: int
    product_id: str
    store_name: str
    url: str
    price: float
    currency: str
    shipping_cost: Optional[float] = None
    in_stock: Optional[bool] = True
    country_code: Optional[str] = None
    store_logo_url: Optional[str] = None


class PricePointView(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    product_id: str
    date: datetime
    price: float
    currency: str
    store_name: Optional[str] = None


class RowError(BaseModel):
    row_number: int
    message: str
    code: Optional[str] = None


class ImportSummary(BaseModel):
    products_created: int = 0
    products_matched: int = 0
    listings_created: int = 0
    listings_updated: int = 0
    product_only_rows: int = 0
    listing_rows: int = 0
    blocked_rows: int = 0
    errors: List[RowError] = Field(default_factory=list)
    skipped_missing_fields: int = 0
    failed_rows: int = 0
    stats: Optional[Dict[str, Any]] = None


class IngestResult(BaseModel):
    count: int = 0
    product_ids: List[str] = Field(default_factory=list)
