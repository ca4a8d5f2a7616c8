import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from pricewatch.config import WorkerSettings
from pricewatch.models import Base
from pricewatch.oracles.registry import OracleSet
from pricewatch.oracles.fixture import FixtureLookupOracle, ThresholdRecommendationOracle
from pricewatch.seed import seed_catalog
from pricewatch_api.api.deps import get_oracle_factory, get_pipeline_settings
from pricewatch_api.db.session import get_db, get_session_factory
from pricewatch_api.main import app

TEST_DB_URL = "sqlite:///:memory:"
ADMIN_HEADERS = {"X-Admin-Token": "dev-admin-token"}


@pytest.fixture()
def session() -> Session:
    engine = create_engine(TEST_DB_URL, connect_args={"check_same_thread": False}, poolclass=StaticPool)
    TestingSessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    seed_catalog(db)
    try:
        yield db
    finally:
        db.close()


@pytest.fixture()
def client(session: Session) -> TestClient:
    def _get_db() -> Session:
        return session

    def _session_factory():
        return lambda: session

    def _settings() -> WorkerSettings:
        return WorkerSettings(_env_file=None, lookup_timeout_seconds=1.0, recommendation_timeout_seconds=1.0)

    def _oracle_factory():
        return lambda settings: OracleSet(lookup=FixtureLookupOracle(), recommendation=ThresholdRecommendationOracle())

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_session_factory] = _session_factory
    app.dependency_overrides[get_pipeline_settings] = _settings
    app.dependency_overrides[get_oracle_factory] = _oracle_factory
    with TestClient(app, headers=ADMIN_HEADERS) as c:
        yield c
    app.dependency_overrides.clear()
