import os
import sys
from pathlib import Path

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Add project root to sys.path
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

# The module-level engine in core.database must not need a running postgres.
os.environ.setdefault("DB_URL", "sqlite://")

from config import ProviderConfig, Settings
from core.models import Base


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session(engine):
    Session = sessionmaker(bind=engine, autoflush=False)
    session = Session()
    yield session
    session.close()


@pytest.fixture
def settings():
    return Settings(
        providers=[
            ProviderConfig(id="dummyjson", name="DummyJSON", enabled=True, base_url="https://dummyjson.com"),
            ProviderConfig(
                id="realstore",
                name="Real-Time Product Search",
                enabled=False,
                base_url="https://rtp.example.test",
                timeout_seconds=20.0,
                requires_api_key=True,
            ),
        ]
    )
