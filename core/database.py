from contextlib import contextmanager

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from config import DB_URL
from core.models import Base

engine = create_engine(DB_URL, pool_pre_ping=True)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db(bind=None):
    """Create all catalog tables on the given engine (defaults to the configured one)."""
    Base.metadata.create_all(bind=bind or engine)


@contextmanager
def get_db():
    """
    Yield a session that commits on success and rolls back on error.

    Usage:
        with get_db() as session:
            session.query(Product).count()
    """
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
