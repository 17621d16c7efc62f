import uuid
from datetime import datetime
from enum import Enum

from beanie import Document, Indexed
from pydantic import Field


class PurchaseStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


def _new_purchase_id() -> str:
    return str(uuid.uuid4())


class CreditPurchase(Document):
    """One attempted credit top-up. Leaves `pending` exactly once, via the gateway callback."""
    purchase_id: Indexed(str, unique=True) = Field(default_factory=_new_purchase_id)
    user_id: Indexed(str)
    package_id: str | None = None
    credits_amount: int
    price_cents: int
    currency: str = "ZAR"
    status: PurchaseStatus = PurchaseStatus.PENDING
    external_payment_id: str | None = None  # gateway's pf_payment_id
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
    completed_at: datetime | None = None

    class Settings:
        name = "credit_purchases"
        indexes = [
            [("user_id", 1), ("created_at", -1)],
        ]
