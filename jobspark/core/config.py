from functools import lru_cache
from typing import Any, List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

_DEFAULT_CORS = ["http://localhost:3000"]

PAYFAST_SANDBOX_URL = "https://sandbox.payfast.co.za/eng/process"


def _parse_cors_origins(v: Any) -> List[str]:
    try:
        if v is None or v == "":
            return _DEFAULT_CORS.copy()
        if isinstance(v, list):
            return [x for x in v if isinstance(x, str) and x.strip()]
        s = str(v).strip()
        if not s:
            return _DEFAULT_CORS.copy()
        if s.startswith("["):
            import json
            out = json.loads(s)
            return [x for x in out if isinstance(x, str) and x.strip()] or _DEFAULT_CORS.copy()
        return [x.strip() for x in s.split(",") if x.strip()] or _DEFAULT_CORS.copy()
    except Exception:
        return _DEFAULT_CORS.copy()


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # App
    env: str = Field(default="development", description="ENV")
    debug: bool = Field(default=False, description="DEBUG")
    secret_key: str = Field(default="change-me-in-production-min-32-chars")

    # MongoDB
    mongodb_uri: str = Field(default="mongodb://localhost:27017", alias="MONGODB_URI")
    mongodb_db_name: str = Field(default="jobspark", alias="MONGODB_DB_NAME")

    # Google sign-in (identity provider)
    google_client_id: str = Field(default="", alias="GOOGLE_CLIENT_ID")

    # PayFast
    payfast_merchant_id: str = Field(default="", alias="PAYFAST_MERCHANT_ID")
    payfast_merchant_key: str = Field(default="", alias="PAYFAST_MERCHANT_KEY")
    payfast_passphrase: str = Field(default="", alias="PAYFAST_PASSPHRASE")
    payfast_process_url: str = Field(default=PAYFAST_SANDBOX_URL, alias="PAYFAST_PROCESS_URL")

    # Public URLs: frontend pages for return/cancel, API host for the notify callback
    app_base_url: str = Field(default="http://localhost:3000", alias="APP_BASE_URL")
    api_base_url: str = Field(default="http://localhost:8000", alias="API_BASE_URL")

    # Sentry
    sentry_dsn: str | None = Field(default=None, alias="SENTRY_DSN")

    # CORS: env as string, exposed as list
    cors_origins_raw: str = Field(
        default="http://localhost:3000",
        alias="CORS_ORIGINS",
        description="Comma-separated or JSON list",
    )

    @property
    def cors_origins(self) -> List[str]:
        return _parse_cors_origins(getattr(self, "cors_origins_raw", None))

    @property
    def payfast_configured(self) -> bool:
        return bool(self.payfast_merchant_id and self.payfast_merchant_key and self.payfast_passphrase)

    # Pricing (credits per feature use)
    credits_per_cv_generation: int = 15
    credits_per_interview_session: int = 30
    currency: str = "ZAR"


@lru_cache
def get_settings() -> Settings:
    return Settings()
