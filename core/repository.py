"""
Persistent store contract for the catalog.

Pipeline code talks to the database only through CatalogRepository. Reads
that leave this module are mapped to the typed views in core.schemas so
callers never work with loosely typed rows.
"""
from core.models import Listing, Product, ProductPriceHistory, price_to_cents
from core.schemas import ListingView, PricePointView


class CatalogRepository:
    def __init__(self, session):
        self.session = session

    # Products

    def get_product(self, product_id):
        if not product_id:
            return None
        return self.session.get(Product, product_id)

    def find_product_by_name(self, name):
        return (
            self.session.query(Product)
            .filter(Product.name == name)
            .order_by(Product.created_at, Product.id)
            .first()
        )

    def create_product(self, **fields):
        product = Product(**fields)
        self.session.add(product)
        self.session.flush()
        return product

    def update_product(self, product, **fields):
        changed = False
        for name, value in fields.items():
            if getattr(product, name) != value:
                setattr(product, name, value)
                changed = True
        if changed:
            self.session.flush()
        return changed

    def upsert_product(self, product_id, **fields):
        product = self.get_product(product_id)
        if product is None:
            return self.create_product(id=product_id, **fields), True
        self.update_product(product, **fields)
        return product, False

    def find_products(self, *criteria):
        return self.session.query(Product).filter(*criteria).all()

    def all_products(self):
        return self.session.query(Product).order_by(Product.id).all()

    def delete_products(self, products):
        for product in products:
            self.session.delete(product)
        self.session.flush()
        return len(products)

    # Listings

    def find_listing(self, key):
        return (
            self.session.query(Listing)
            .filter(
                Listing.product_id == key.product_id,
                Listing.store_key == key.store_key,
                Listing.url == key.url,
            )
            .first()
        )

    def create_listing(self, key, **fields):
        fields['price_cents'] = price_to_cents(fields.get('price'))
        listing = Listing(product_id=key.product_id, store_key=key.store_key, url=key.url, **fields)
        self.session.add(listing)
        self.session.flush()
        return listing

    def update_listing(self, listing, **fields):
        if 'price' in fields:
            fields['price_cents'] = price_to_cents(fields['price'])
        for name, value in fields.items():
            setattr(listing, name, value)
        self.session.flush()
        return listing

    def delete_listings(self, product_id):
        count = self.session.query(Listing).filter(Listing.product_id == product_id).delete(
            synchronize_session='fetch'
        )
        self.session.flush()
        return count

    def listings_for(self, product_ids=None):
        query = self.session.query(Listing)
        if product_ids is not None:
            query = query.filter(Listing.product_id.in_(list(product_ids)))
        return [ListingView.model_validate(row) for row in query.order_by(Listing.id)]

    # Price history

    def add_price_point(self, product_id, date, price, currency, store_name=None):
        point = ProductPriceHistory(
            product_id=product_id, date=date, price=price, currency=currency, store_name=store_name
        )
        self.session.add(point)
        self.session.flush()
        return point

    def delete_price_history(self, product_id):
        count = self.session.query(ProductPriceHistory).filter(
            ProductPriceHistory.product_id == product_id
        ).delete(synchronize_session='fetch')
        self.session.flush()
        return count

    def price_history_for(self, product_ids=None):
        query = self.session.query(ProductPriceHistory)
        if product_ids is not None:
            query = query.filter(ProductPriceHistory.product_id.in_(list(product_ids)))
        return [PricePointView.model_validate(row) for row in query.order_by(ProductPriceHistory.date)]
