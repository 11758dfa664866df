"""
Pytest configuration and shared test helpers for backend tests.
"""
import os
import sys
from pathlib import Path

# Skip heavy server startup (MongoDB, scheduler) when running under pytest.
os.environ.setdefault("PYTEST_RUNNING", "1")

BACKEND_DIR = Path(__file__).resolve().parent.parent
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))
TESTS_DIR = Path(__file__).resolve().parent
if str(TESTS_DIR) not in sys.path:
    sys.path.insert(0, str(TESTS_DIR))

import pytest
import pytest_asyncio

from fake_mongo import FakeDatabase
from database import create_ledger_indexes
from reportcredits.bootstrap import build_services
from reportcredits.handlers.base import AnalysisHandler
from reportcredits.models.jobs import AnalysisJobType

USER_ID = "user-test-001"


class StubHandler(AnalysisHandler):
    """Handler returning a canned result, or raising a canned error."""

    def __init__(self, job_type, result=None, error=None, required_fields=()):
        self.job_type = job_type
        self.required_fields = tuple(required_fields)
        self.result = result if result is not None else {"summary": "ok", "confidence": 0.9}
        self.error = error
        self.calls = []

    async def handle(self, inputs):
        self.calls.append(inputs)
        if self.error is not None:
            raise self.error
        return self.result


def stub_handlers(**overrides):
    """One StubHandler per active job type; overrides keyed by job type value."""
    active = (
        AnalysisJobType.PAINT_ANALYSIS,
        AnalysisJobType.DAMAGE_ANALYSIS,
        AnalysisJobType.ENGINE_SOUND_ANALYSIS,
        AnalysisJobType.COMPREHENSIVE_EXPERTISE,
    )
    return [overrides.get(jt.value) or StubHandler(jt) for jt in active]


@pytest_asyncio.fixture
async def fake_db():
    db = FakeDatabase()
    await create_ledger_indexes(db)
    return db


@pytest_asyncio.fixture
async def services(fake_db):
    built = build_services(fake_db, handlers=stub_handlers())
    await built.catalog.seed_defaults()
    return built


@pytest.fixture
def client():
    """Return a TestClient for the main FastAPI app (server:app). Use for unit-style API tests."""
    from fastapi.testclient import TestClient
    from server import app
    return TestClient(app)
