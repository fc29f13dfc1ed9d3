"""
Test configuration for FXComp backend tests.
"""

import os

import pytest

from backend.models import (
    Base,
    CredentialAssignment,
    PerformanceData,
    PerformanceDataSource,
    Trader,
    TradingCredential,
)

# SessionLocal refuses to run under pytest without a dedicated test URL
os.environ.setdefault("TEST_DATABASE_URL", "sqlite://")


@pytest.fixture(autouse=True, scope="session")
def _enable_fast_test_mode():
    """Ensure code runs in test mode across the suite."""
    os.environ["FXCOMP_TESTING"] = "1"
    yield
    os.environ.pop("FXCOMP_TESTING", None)


@pytest.fixture
def test_engine():
    """Fresh in-memory database per test; schema built from the models."""
    from sqlalchemy import create_engine
    from sqlalchemy.pool import StaticPool

    test_engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(test_engine)
    try:
        yield test_engine
    finally:
        Base.metadata.drop_all(test_engine)
        test_engine.dispose()


@pytest.fixture
def db_session(test_engine):
    from sqlalchemy.orm import sessionmaker

    SessionForTests = sessionmaker(bind=test_engine, autocommit=False, autoflush=False)
    session = SessionForTests()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def credential(db_session):
    credential = TradingCredential(
        account_username="comp_trader_01",
        account_number="50012345",
        platform="mt5",
    )
    db_session.add(credential)
    db_session.commit()
    return credential


@pytest.fixture
def trader(db_session):
    trader = Trader(full_name="Ada Lovelace", email="ada@example.com")
    db_session.add(trader)
    db_session.commit()
    return trader


@pytest.fixture
def assigned_credential(db_session, credential, trader):
    """Credential bound to a trader with a 1000 starting balance."""
    db_session.add(CredentialAssignment(credential_id=credential.id, trader_id=trader.id))
    db_session.add(
        PerformanceData(
            trader_id=trader.id,
            starting_balance=1000.0,
            current_balance=1000.0,
            profit_percentage=0.0,
            data_source=PerformanceDataSource.REGISTRATION,
        )
    )
    db_session.commit()
    return credential


@pytest.fixture
def make_credential(db_session):
    """Factory for extra credential/trader pairs."""
    counter = {"n": 0}

    def _make(assign: bool = True, starting_balance: float = 1000.0) -> TradingCredential:
        counter["n"] += 1
        n = counter["n"]
        credential = TradingCredential(
            account_username=f"extra_{n}", account_number=f"7000{n}", platform="mt5"
        )
        db_session.add(credential)
        db_session.commit()
        if assign:
            trader = Trader(full_name=f"Extra Trader {n}", email=f"extra{n}@example.com")
            db_session.add(trader)
            db_session.commit()
            db_session.add(CredentialAssignment(credential_id=credential.id, trader_id=trader.id))
            db_session.add(
                PerformanceData(
                    trader_id=trader.id,
                    starting_balance=starting_balance,
                    current_balance=starting_balance,
                    profit_percentage=0.0,
                )
            )
            db_session.commit()
        return credential

    return _make


def pytest_collection_modifyitems(items):
    """Fail fast on forbidden DB imports in test modules."""
    violations = []

    def _is_forbidden(obj, name: str) -> bool:
        if name == "SessionLocal":
            return True
        if name == "engine":
            try:
                from sqlalchemy.engine import Engine as _Engine
                return isinstance(obj, _Engine)
            except Exception:
                return False
        return False

    for item in items:
        mod = item.module
        for name in ("SessionLocal", "engine"):
            if name in mod.__dict__ and _is_forbidden(mod.__dict__[name], name):
                violations.append(f"{mod.__name__}:{name}")

    if violations:
        uniq = sorted(set(violations))
        raise pytest.UsageError(
            "Tests must use db_session fixture; forbidden DB handles detected in: "
            + ", ".join(uniq)
        )


@pytest.fixture
def api_client(db_session):
    """TestClient bound to the per-test session; yields (client, app) for further overrides."""
    from fastapi.testclient import TestClient

    from backend.api.main import app
    from backend.database import get_db

    def _override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = _override_get_db
    try:
        yield TestClient(app), app
    finally:
        app.dependency_overrides.clear()
