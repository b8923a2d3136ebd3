"""
Shared test fixtures for the Talent Payout Dashboard test suite.

  - `repo`:   InMemoryRepository seeded with a small platform catalog
  - `talent`, `period`: a talent with one 3-week period
  - `ledger`: FakeLedger with a configurable total (no network)
  - `make_client`: TestClient factory with the repository, ledger and
                   identity dependencies overridden
"""

import os
import sys
from datetime import date
from typing import Optional

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from fastapi.testclient import TestClient

from models.schemas import Identity, LedgerDetail, LedgerItem, Platform, Role
from services.repository import InMemoryRepository


# ===========================================================================
# Catalog
# ===========================================================================

CHATURBATE = Platform(id="chaturbate", name="Chaturbate", currency="tokens",
                      unit_to_usd=0.05, weekly=True, has_traffic=True)
STRIPCHAT = Platform(id="stripchat", name="Stripchat", currency="tokens",
                     unit_to_usd=0.05, weekly=True, has_traffic=True)
STREAMATE = Platform(id="streamate", name="Streamate", currency="usd", unit_to_usd=1.0)
XLOVE = Platform(id="xlove", name="XLove", currency="eur", unit_to_usd=1.0)
FLIRT = Platform(id="flirt", name="Flirt4Free", currency="credits", unit_to_usd=0.05)
TOKENS_TOTAL = Platform(id="tokens_total", name="TokenSite", currency="tokens", unit_to_usd=0.05)

CATALOG = [CHATURBATE, STRIPCHAT, STREAMATE, XLOVE, FLIRT, TOKENS_TOTAL]


class FakeLedger:
    """Stands in for LedgerClient; records every lookup."""

    def __init__(self, total: float = 0.0, items: Optional[list[LedgerItem]] = None):
        self.total = total
        self.items = items or []
        self.calls: list[tuple] = []

    def fetch_total(self, customer_name, start_date, end_date):
        self.calls.append(("total", customer_name, start_date, end_date))
        return self.total

    def fetch_detail(self, customer_name, start_date, end_date):
        self.calls.append(("detail", customer_name, start_date, end_date))
        return self.items

    def fetch_statement(self, customer_name, start_date, end_date):
        return LedgerDetail(
            total=self.fetch_total(customer_name, start_date, end_date),
            items=self.fetch_detail(customer_name, start_date, end_date),
        )


# ===========================================================================
# Fixtures
# ===========================================================================

@pytest.fixture
def repo():
    return InMemoryRepository(platforms=list(CATALOG))


@pytest.fixture
def talent(repo):
    return repo.create_talent("Sofia", 60.0)


@pytest.fixture
def period(repo, talent):
    return repo.create_period(talent.id, {
        "name": "March 1-15",
        "percent": 60,
        "usd_to_local_rate": 4000,
        "eur_to_usd_rate": 1.1,
        "goal": 2_000_000,
        "weeks_count": 3,
        "ledger_enabled": True,
        "start_date": date(2026, 3, 1),
        "end_date": date(2026, 3, 15),
    })


@pytest.fixture
def ledger():
    return FakeLedger()


@pytest.fixture
def output_dir(tmp_path):
    """Point statement output at a temp directory."""
    from unittest.mock import patch
    with patch("config.OUTPUT_DIR", str(tmp_path)):
        yield str(tmp_path)


@pytest.fixture
def make_client(repo, ledger):
    """
    Build a TestClient acting as the given identity.

    Usage:
        client = make_client(Role.ADMIN)
        client = make_client(Role.TALENT, talent_id=talent.id)
    """
    from main import app, get_identity, get_ledger, get_repository

    def _make(role: Role, talent_id: Optional[str] = None, user_id: str = "user-1") -> TestClient:
        identity = Identity(user_id=user_id, email=f"{user_id}@example.com", role=role, talent_id=talent_id)
        app.dependency_overrides[get_repository] = lambda: repo
        app.dependency_overrides[get_ledger] = lambda: ledger
        app.dependency_overrides[get_identity] = lambda: identity
        return TestClient(app)

    yield _make
    app.dependency_overrides.clear()
