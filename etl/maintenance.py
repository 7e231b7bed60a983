import logging

from sqlalchemy import func, or_, select

from core.models import Listing, Product
from core.repository import CatalogRepository
from etl.categories import infer_category_slug, infer_subcategory, is_valid_category_key

logger = logging.getLogger(__name__)

DEMO_ID_PREFIXES = ['dummyjson-', 'demo-', 'dummy-', 'static-']
DEMO_BRANDS = ['dummyjson', 'demobrand', 'demoaudio']
DEMO_STORE_NAMES = ['dummyjson']
DEMO_URL_PATTERNS = ['dummyjson.com', 'example.com']


def reinfer_categories(session, only_missing=False, dry_run=False):
    """
    Recompute every product's category with the current rules.

    Valid canonical categories are kept as they are; raw feed labels are
    mapped or replaced. Safe to run repeatedly.
    """
    repository = CatalogRepository(session)
    summary = {'scanned': 0, 'updated': 0, 'unchanged': 0, 'uncategorized': 0}

    for product in repository.all_products():
        if only_missing and product.category:
            continue
        summary['scanned'] += 1
        current = product.category
        inferred = infer_category_slug(
            product.name,
            description=product.description,
            explicit_category_slug=current if is_valid_category_key(current) else None,
            feed_category=current,
        )
        if inferred is None:
            summary['uncategorized'] += 1
        if inferred == current:
            summary['unchanged'] += 1
            continue

        summary['updated'] += 1
        logger.info(f"Category for {product.id}: {current!r} -> {inferred!r}")
        if not dry_run:
            repository.update_product(
                product,
                category=inferred,
                subcategory=infer_subcategory(inferred, product.name, product.description) if inferred else None,
            )

    if dry_run:
        session.rollback()
    else:
        session.commit()
    logger.info(f"Re-infer finished: {summary}")
    return summary


def find_demo_products(session):
    listing_match = select(Listing.product_id).where(
        or_(
            *[func.lower(Listing.store_name) == s for s in DEMO_STORE_NAMES],
            *[func.lower(Listing.url).contains(p) for p in DEMO_URL_PATTERNS],
        )
    )
    return (
        session.query(Product)
        .filter(
            or_(
                *[Product.id.startswith(prefix) for prefix in DEMO_ID_PREFIXES],
                *[func.lower(Product.brand) == b for b in DEMO_BRANDS],
                Product.id.in_(listing_match),
            )
        )
        .order_by(Product.id)
        .all()
    )


def cleanup_demo_products(session, dry_run=False):
    """Delete synthetic products (and, by cascade, their listings and history)."""
    products = find_demo_products(session)
    product_ids = [p.id for p in products]
    if dry_run:
        logger.info(f"Dry run: would delete {len(product_ids)} demo products")
        return {'deleted': 0, 'matched': len(product_ids), 'product_ids': product_ids}

    deleted = CatalogRepository(session).delete_products(products)
    session.commit()
    logger.info(f"Deleted {deleted} demo products")
    return {'deleted': deleted, 'matched': len(product_ids), 'product_ids': product_ids}
