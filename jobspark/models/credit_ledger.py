from datetime import datetime
from typing import Literal

from beanie import Document
from pydantic import Field

LedgerReason = Literal["purchase", "usage", "bonus", "refund"]


class CreditLedgerEntry(Document):
    user_id: str
    amount: int  # positive = credit, negative = debit
    balance_after: int
    reason: LedgerReason
    reference_type: str | None = None  # credit_purchase, feature, etc.
    reference_id: str | None = None
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "credit_ledger"
        indexes = [
            [("user_id", 1), ("created_at", -1)],
        ]
