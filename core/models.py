import uuid

from sqlalchemy import (
    Boolean,
    Column,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    TIMESTAMP,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()

# Largest value a signed 32-bit integer column can hold.
MAX_PRICE_CENTS = 2147483647


def new_id():
    return str(uuid.uuid4())


def price_to_cents(price):
    """round(price * 100), clamped to the range of a signed 32-bit integer."""
    if price is None:
        return None
    cents = int(round(float(price) * 100))
    return max(0, min(cents, MAX_PRICE_CENTS))


class Product(Base):
    __tablename__ = 'products'
    id = Column(Text, primary_key=True, default=new_id)
    name = Column(Text, nullable=False, index=True)
    display_name = Column(Text)
    description = Column(Text)
    category = Column(Text, index=True)
    subcategory = Column(Text)
    brand = Column(Text)
    gtin = Column(Text)
    image_url = Column(Text)
    thumbnail_url = Column(Text)
    created_at = Column(TIMESTAMP, server_default=func.now())
    updated_at = Column(TIMESTAMP, server_default=func.now(), onupdate=func.now())

    listings = relationship('Listing', back_populates='product', cascade='all, delete-orphan')
    price_history = relationship(
        'ProductPriceHistory', back_populates='product', cascade='all, delete-orphan'
    )


class Listing(Base):
    __tablename__ = 'listings'
    id = Column(Integer, primary_key=True, autoincrement=True)
    product_id = Column(Text, ForeignKey('products.id', ondelete='CASCADE'), nullable=False, index=True)
    store_name = Column(Text, nullable=False)
    # Case-folded store name; part of the dedup key together with product_id and url.
    store_key = Column(Text, nullable=False)
    store_logo_url = Column(Text)
    url = Column(Text, nullable=False)
    image_url = Column(Text)
    price = Column(Numeric(12, 2, asdecimal=False), nullable=False)
    price_cents = Column(Integer)
    currency = Column(String(10), nullable=False)
    shipping_cost = Column(Numeric(12, 2, asdecimal=False))
    delivery_days = Column(Integer)
    fast_delivery = Column(Boolean, default=False)
    in_stock = Column(Boolean, default=True)
    country_code = Column(String(8))
    location = Column(Text)
    rating = Column(Numeric(3, 2, asdecimal=False))
    review_count = Column(Integer)
    affiliate_provider = Column(Text)
    affiliate_program = Column(Text)
    source = Column(Text)
    price_last_seen_at = Column(TIMESTAMP)
    created_at = Column(TIMESTAMP, server_default=func.now())
    updated_at = Column(TIMESTAMP, server_default=func.now(), onupdate=func.now())

    product = relationship('Product', back_populates='listings')

    __table_args__ = (UniqueConstraint('product_id', 'store_key', 'url', name='uq_listing_product_store_url'),)


class ProductPriceHistory(Base):
    __tablename__ = 'product_price_history'
    id = Column(Integer, primary_key=True, autoincrement=True)
    product_id = Column(Text, ForeignKey('products.id', ondelete='CASCADE'), nullable=False, index=True)
    date = Column(TIMESTAMP, nullable=False)
    price = Column(Numeric(12, 2, asdecimal=False), nullable=False)
    currency = Column(String(10), nullable=False)
    store_name = Column(Text)

    product = relationship('Product', back_populates='price_history')
