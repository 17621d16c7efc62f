from datetime import datetime
from typing import Any

from beanie import Document
from pydantic import Field


class AuditLog(Document):
    """Append-only record of purchase and sign-in events."""
    user_id: str | None = None  # None for gateway-originated events with no resolved user
    event_type: str  # purchase_created, purchase_completed, purchase_failed, user_login, user_created
    entity_type: str  # credit_purchase, user
    entity_id: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "audit_logs"
        indexes = [
            [("user_id", 1), ("created_at", -1)],
            [("entity_type", 1), ("entity_id", 1)],
        ]
