import logging
import math
from dataclasses import dataclass
from typing import Optional

import pandas as pd
from sqlalchemy import select

from core.models import Listing, ProductPriceHistory

logger = logging.getLogger(__name__)

MIN_HISTORY_POINTS = 3
MAX_DISCOUNT_PERCENT = 90
GREAT_DEAL_PERCENT = 15


def _round_half_up(value):
    return int(math.floor(value + 0.5))


def compute_discount_percent(current_price, average_price):
    """
    Whole-number percent the current price sits below the average.

    Negative when the price is above average; None without a usable average.
    """
    if average_price is None or current_price is None or average_price <= 0:
        return None
    percent = _round_half_up((average_price - current_price) / average_price * 100)
    return min(percent, MAX_DISCOUNT_PERCENT)


def _price(item):
    return item.get('price') if isinstance(item, dict) else getattr(item, 'price', None)


def _valid_prices(items):
    prices = []
    for item in items or []:
        price = _price(item)
        if price is not None and math.isfinite(float(price)) and float(price) > 0:
            prices.append(float(price))
    return prices


def cheapest_price(listings):
    prices = _valid_prices(listings)
    return min(prices) if prices else None


def average_history_price(history):
    prices = _valid_prices(history)
    if len(prices) < MIN_HISTORY_POINTS:
        return None
    return sum(prices) / len(prices)


def compute_product_discount(listings, history):
    return compute_discount_percent(cheapest_price(listings), average_history_price(history))


@dataclass
class DealInfo:
    current_price: Optional[float]
    average_price: Optional[float]
    discount_percent: Optional[int]
    is_great_deal: bool
    label: Optional[str] = None


def compute_deal_info(listings, history, threshold=GREAT_DEAL_PERCENT):
    current = cheapest_price(listings)
    average = average_history_price(history)
    percent = compute_discount_percent(current, average)
    great = percent is not None and percent >= threshold
    label = f"≈ {percent}% below usual price" if great else None
    return DealInfo(current, average, percent, great, label)


def find_great_deals(session, min_percent=GREAT_DEAL_PERCENT, limit=None):
    """Products whose cheapest listing is at least ``min_percent`` below their average history price."""
    connection = session.connection()
    listings = pd.read_sql(
        select(Listing.product_id, Listing.price).where(Listing.price > 0), connection
    )
    history = pd.read_sql(
        select(ProductPriceHistory.product_id, ProductPriceHistory.price).where(ProductPriceHistory.price > 0),
        connection,
    )
    if listings.empty or history.empty:
        return []

    current = listings.groupby('product_id')['price'].min().rename('current_price')
    stats = history.groupby('product_id')['price'].agg(['mean', 'count'])
    frame = stats[stats['count'] >= MIN_HISTORY_POINTS].join(current, how='inner')
    if frame.empty:
        return []

    frame['discount_percent'] = [
        compute_discount_percent(float(c), float(m)) for c, m in zip(frame['current_price'], frame['mean'])
    ]
    frame = frame[frame['discount_percent'] >= min_percent].sort_values('discount_percent', ascending=False)
    if limit:
        frame = frame.head(limit)

    deals = [
        {
            'product_id': product_id,
            'current_price': float(row['current_price']),
            'average_price': round(float(row['mean']), 2),
            'discount_percent': int(row['discount_percent']),
            'label': f"≈ {int(row['discount_percent'])}% below usual price",
        }
        for product_id, row in frame.iterrows()
    ]
    logger.info(f"Found {len(deals)} deals at or above {min_percent}%")
    return deals
