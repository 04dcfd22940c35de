"""
Shared fixtures: in-memory SQLite store, mocked UISP client and a signed
FastAPI test client. Nothing here talks to a real UISP or Splynx.
"""
import json
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient

from paysync.config import Settings
from paysync.database import PaymentStore, create_engine, init_db
from paysync.main import create_app
from paysync.signature import compute_signature
from paysync.uisp import UispClient

SECRET = "test-webhook-secret"


@pytest.fixture
def settings(tmp_path):
    # file-backed so background tasks get their own connections
    return Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'paysync.db'}",
        webhook_secret=SECRET,
        uisp_api_url="https://uisp.test/crm/api/v1.0",
        uisp_app_key="test-app-key",
        uisp_sync_page_size=2,
        log_level="WARNING",
    )


@pytest.fixture
def uisp_client_data():
    return {
        "id": 42,
        "userIdent": "C-42",
        "firstName": "Jane",
        "lastName": "Wanjiru",
        "companyName": None,
        "street1": "Moi Avenue 1",
        "city": "Nairobi",
        "zipCode": "00100",
        "isActive": True,
        "hasSuspendedService": False,
        "accountBalance": 150.0,
        "accountOutstanding": 0,
        "accountCredit": 150.0,
        "contacts": [{"email": "jane@example.com", "phone": "+254700000000"}],
    }


@pytest.fixture
def mock_uisp(uisp_client_data):
    uisp = MagicMock(spec=UispClient)
    uisp.post_payment = AsyncMock(return_value={"id": 9001, "amount": 100})
    uisp.get_client = AsyncMock(return_value=uisp_client_data)
    uisp.get_client_payments = AsyncMock(return_value=[{"id": 9001, "amount": 100}])
    uisp.list_clients = AsyncMock(return_value=[uisp_client_data])
    return uisp


@pytest.fixture
def app(settings, mock_uisp):
    return create_app(settings, uisp=mock_uisp)


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c


@pytest.fixture
def post_webhook(client):
    """POST a signed JSON body to /webhook/payment."""
    def _post(body, secret=SECRET):
        raw = json.dumps(body).encode()
        headers = {"Content-Type": "application/json"}
        if secret:
            headers["X-Splynx-Signature"] = compute_signature(raw, secret)
        return client.post("/webhook/payment", content=raw, headers=headers)
    return _post


@pytest.fixture
def drain(client, app):
    """Wait for background tasks started by the app."""
    def _drain():
        client.portal.call(app.state.worker.drain)
    return _drain


@pytest_asyncio.fixture
async def store(tmp_path):
    engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'store.db'}")
    await init_db(engine)
    yield PaymentStore(engine)
    await engine.dispose()


@pytest.fixture
def payment_record():
    return {
        "transaction_id": "TX-1001",
        "client_id": "42",
        "amount": 100.0,
        "currency_code": "KES",
        "payment_type": "mpesa",
        "payment_method": "mpesa",
        "created_at": "2024-01-15T12:00:00",
    }
