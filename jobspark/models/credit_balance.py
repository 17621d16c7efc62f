from datetime import datetime

from beanie import Document, Indexed
from pydantic import Field


class CreditBalance(Document):
    """Current balance per user. Mutated only by conditional $inc in services.credits."""
    user_id: Indexed(str, unique=True)
    balance: int = 0
    total_purchased: int = 0
    total_used: int = 0
    applied_purchase_ids: list[str] = Field(default_factory=list)  # purchases already credited
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "credit_balances"
