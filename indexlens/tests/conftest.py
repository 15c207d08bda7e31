import os

# Must run before indexlens.config is imported anywhere
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["FMP_API_KEY"] = "test-key"
os.environ["FMP_REQUEST_INTERVAL_MS"] = "0"
os.environ["BATCH_DELAY_MS"] = "0"
os.environ["RECENT_IPO_OVERRIDES"] = "RIVN,ABNB"

import pytest
from sqlalchemy.orm import sessionmaker

from indexlens.database import Base, make_engine
import indexlens.models  # noqa: F401  (registers tables on Base)


@pytest.fixture
def db():
    """Fresh in-memory database per test."""
    engine = make_engine("sqlite://")
    Base.metadata.create_all(bind=engine)
    session = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    try:
        yield session
    finally:
        session.close()
        engine.dispose()
