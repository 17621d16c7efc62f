import os
from typing import AsyncGenerator, Callable

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from mongomock_motor import AsyncMongoMockClient

# PayFast sandbox merchant; must be set before settings are first read
os.environ.setdefault("SECRET_KEY", "test-secret-key-min-32-characters-long")
os.environ.setdefault("MONGODB_DB_NAME", "jobspark_test")
os.environ.setdefault("PAYFAST_MERCHANT_ID", "10000100")
os.environ.setdefault("PAYFAST_MERCHANT_KEY", "46f0cd694581a")
os.environ.setdefault("PAYFAST_PASSPHRASE", "jt7NOE43FZPn")
os.environ.setdefault("APP_BASE_URL", "https://app.jobspark.test")
os.environ.setdefault("API_BASE_URL", "https://api.jobspark.test")


@pytest_asyncio.fixture
async def db():
    """Fresh in-memory database bound to all document models."""
    from jobspark.db.init import init_db
    client = AsyncMongoMockClient()
    database = client["jobspark_test"]
    await init_db(database)
    yield database


@pytest_asyncio.fixture
async def client(db) -> AsyncGenerator[AsyncClient, None]:
    from jobspark.main import app
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac


@pytest_asyncio.fixture
async def user(db):
    from jobspark.models.user import User
    u = User(google_sub="google-sub-1", email="thandi@example.com", name="Thandi Mokoena")
    await u.insert()
    return u


@pytest.fixture
def auth_headers(user) -> dict[str, str]:
    from jobspark.services.users import issue_access_token
    return {"Authorization": f"Bearer {issue_access_token(user)}"}


@pytest.fixture
def gateway():
    from jobspark.services.payments import get_gateway
    return get_gateway()


@pytest.fixture
def itn_payload(gateway) -> Callable[..., dict[str, str]]:
    """Build a signed PayFast ITN for a purchase, in the field order PayFast posts them."""

    def build(purchase, payment_status: str = "COMPLETE", pf_payment_id: str = "1089250", **overrides) -> dict[str, str]:
        amount = f"{purchase.price_cents // 100}.{purchase.price_cents % 100:02d}"
        fields = {
            "m_payment_id": purchase.purchase_id,
            "pf_payment_id": pf_payment_id,
            "payment_status": payment_status,
            "item_name": f"{purchase.credits_amount} JobSpark Credits",
            "item_description": "",
            "amount_gross": amount,
            "amount_fee": "-1.15",
            "amount_net": "48.85",
            "custom_str1": purchase.purchase_id,
            "custom_str2": str(purchase.credits_amount),
            "name_first": "Thandi",
            "name_last": "Mokoena",
            "email_address": "thandi@example.com",
            "merchant_id": gateway.config.merchant_id,
        }
        fields.update(overrides)
        fields["signature"] = gateway.generate_signature(fields)
        return fields

    return build
