"""
Pytest configuration and fixtures for the financials test suite

Markers:
    - unit: Fast unit tests
    - property: Property-based tests (Hypothesis)
    - metamorphic: Metamorphic relation tests
    - slow: Performance and stress tests (excluded by default)
    - integration: Integration tests requiring full stack
"""

import os
import sys

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import financials_models  # noqa: E402
from blueprint_schema import Blueprint, FiscalYearConfig, LineItem, RatioDefinition  # noqa: E402
from initiative_schema import Initiative  # noqa: E402


# ═══════════════════════════════════════════════════════════════════════════════
# PYTEST CONFIGURATION
# ═══════════════════════════════════════════════════════════════════════════════

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "unit: Fast unit tests")
    config.addinivalue_line("markers", "property: Property-based tests (Hypothesis)")
    config.addinivalue_line("markers", "metamorphic: Metamorphic relation tests")
    config.addinivalue_line("markers", "slow: Performance/stress tests (excluded by default)")
    config.addinivalue_line("markers", "integration: Integration tests requiring full stack")


def pytest_addoption(parser):
    """Add custom CLI options."""
    parser.addoption(
        "--run-slow",
        action="store_true",
        default=False,
        help="Run slow tests"
    )


def pytest_collection_modifyitems(config, items):
    """Skip slow tests unless --run-slow is passed."""
    if config.getoption("--run-slow"):
        return

    skip_slow = pytest.mark.skip(reason="Need --run-slow option to run")
    for item in items:
        if "slow" in item.keywords:
            item.add_marker(skip_slow)


# ═══════════════════════════════════════════════════════════════════════════════
# DATABASE
# ═══════════════════════════════════════════════════════════════════════════════

@pytest.fixture(scope="function")
def db_session():
    """Fresh in-memory database session for each test"""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False,
    )
    financials_models.Base.metadata.create_all(engine)

    Session = sessionmaker(bind=engine)
    session = Session()

    yield session

    session.close()
    engine.dispose()


@pytest.fixture
def api_client(db_session):
    """TestClient over the financials routers, bound to the test session"""
    from fastapi import FastAPI
    from fastapi.testclient import TestClient

    from database import get_db
    from financials_api import preferences_router, router

    app = FastAPI()
    app.include_router(router)
    app.include_router(preferences_router)

    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as client:
        yield client


# ═══════════════════════════════════════════════════════════════════════════════
# DOMAIN BUILDERS
# ═══════════════════════════════════════════════════════════════════════════════

@pytest.fixture
def make_line():
    """Build a LineItem with short defaults: code and name derive from the id"""
    def _make(line_id, nature="revenue", computation="manual", indent=0, months=None, code=None, name=None):
        return LineItem.from_dict({
            "id": line_id,
            "code": code if code is not None else line_id.upper().replace("-", "_"),
            "name": name or line_id.replace("-", " ").title(),
            "indent": indent,
            "nature": nature,
            "computation": computation,
            "months": months or {},
        })
    return _make


@pytest.fixture
def make_initiative():
    """
    Build an Initiative whose active stage holds the given entries.

    Each entry is (line_code, distribution, actuals); kpis are raw dicts.
    """
    def _make(initiative_id, entries=(), stage="l1", workstream="ws-1", kpis=None, name=None,
              kind="recurring-benefits"):
        financial_entries = [
            {
                "id": f"{initiative_id}-e{index}",
                "lineCode": code,
                "distribution": distribution or {},
                "actuals": actuals or {},
            }
            for index, (code, distribution, actuals) in enumerate(entries)
        ]
        return Initiative.from_dict({
            "id": initiative_id,
            "name": name or f"Initiative {initiative_id}",
            "workstreamId": workstream,
            "activeStage": stage,
            "stages": {
                stage: {
                    "financials": {kind: financial_entries},
                    "kpis": list(kpis or []),
                }
            },
        })
    return _make


@pytest.fixture
def sample_lines(make_line):
    """
    Small P&L:

        REV (children)          Jan 150   Feb 110
          REV_A  revenue        Jan 100   Feb 110
          REV_B  revenue        Jan  50
        COST (children)         Jan -30   Feb -40
          COST_A cost           Jan  30   Feb  40
        GROSS (cumulative)      Jan 120   Feb  70
        TAX cost                Jan  10
        NET (cumulative)        Jan 110   Feb  70
    """
    return [
        make_line("rev", computation="children", nature="summary"),
        make_line("rev-a", indent=1, months={"2025-01": 100, "2025-02": 110}),
        make_line("rev-b", indent=1, months={"2025-01": 50}),
        make_line("cost", computation="children", nature="summary"),
        make_line("cost-a", nature="cost", indent=1, months={"2025-01": 30, "2025-02": 40}),
        make_line("gross", computation="cumulative"),
        make_line("tax", nature="cost", months={"2025-01": 10}),
        make_line("net", computation="cumulative"),
    ]


@pytest.fixture
def sample_blueprint(sample_lines):
    return Blueprint(
        start_month="2025-01",
        month_count=12,
        lines=sample_lines,
        fiscal_year=FiscalYearConfig(start_month=1),
        ratios=[
            RatioDefinition(id="gm", label="Gross margin", numerator_code="GROSS", denominator_code="REV"),
            RatioDefinition(id="nm", label="Net margin", numerator_code="NET", denominator_code="REV"),
        ],
    )


@pytest.fixture
def month_keys():
    return ["2025-01", "2025-02"]
