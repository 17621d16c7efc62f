from datetime import datetime

from beanie import Document, Indexed
from pydantic import Field


class User(Document):
    """Identity record mirrored from the sign-in provider. Not owned by the ledger."""
    google_sub: Indexed(str, unique=True)
    email: str
    name: str = ""
    picture: str | None = None
    session_version: int = 0
    last_login_at: datetime | None = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "users"
