"""
Test configuration and fixtures for the deal pipeline API
"""

import asyncio
import os
from uuid import uuid4

# Settings are read at import time
TEST_DATABASE_URL = "sqlite+aiosqlite:///./test_crm.db"
os.environ.setdefault("SECRET_KEY", "test-secret-key-for-pipeline-tests")
os.environ.setdefault("DATABASE_URL", TEST_DATABASE_URL)
os.environ.setdefault("NATS_ENABLED", "false")
os.environ.setdefault("LOG_LEVEL", "WARNING")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import NullPool

from crm.app.main import app
from crm.app.core.database import Base
from crm.app.core.security import create_access_token
from crm.app.models.schemas import DealSnapshot


async def _drop_tables():
    engine = create_async_engine(os.environ["DATABASE_URL"], poolclass=NullPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def client():
    """Test client; the app lifespan creates the tables, teardown drops them."""
    asyncio.run(_drop_tables())
    with TestClient(app) as test_client:
        yield test_client
    asyncio.run(_drop_tables())


@pytest.fixture
def user_id():
    return uuid4()


@pytest.fixture
def auth_headers(user_id):
    """Bearer token shaped like the hosted auth platform's tokens."""
    token = create_access_token({
        "sub": str(user_id),
        "email": "rep@example.com",
        "user_metadata": {"role": "member"},
    })
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def discussions_complete():
    """Discussions stage fields that satisfy every requirement."""
    return {
        "customer_need_identified": True,
        "need_summary": "needs X",
        "decision_maker_present": True,
        "customer_agreed_on_need": "Yes",
    }


@pytest.fixture
def qualified_complete():
    return {
        "nda_signed": False,
        "budget_confirmed": "Estimate Only",
        "supplier_portal_access": "Invited",
        "expected_deal_timeline_start": "2026-11-01",
        "expected_deal_timeline_end": "2027-03-31",
    }


@pytest.fixture
def rfq_complete():
    return {
        "rfq_value": 42000,
        "rfq_document_url": "https://files.example.com/rfq/123.pdf",
        "product_service_scope": "Two assembly cells with commissioning",
    }


@pytest.fixture
def offered_complete():
    return {
        "proposal_sent_date": "2026-10-01",
        "negotiation_status": "Ongoing",
        "decision_expected_date": "2026-12-15",
    }


@pytest.fixture
def make_deal():
    """Build an in-memory deal snapshot for the pure rule tests."""
    def _make(stage="Discussions", **fields):
        return DealSnapshot(id=uuid4(), deal_name="Test deal", stage=stage, **fields)
    return _make


@pytest.fixture
def create_deal(client, auth_headers):
    """Create a deal through the API and return its JSON."""
    def _create(**fields):
        payload = {"deal_name": "Acme retrofit", **fields}
        response = client.post("/api/v1/deals/", json=payload, headers=auth_headers)
        assert response.status_code == 201, response.text
        return response.json()["data"]
    return _create
