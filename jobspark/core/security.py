"""Signed bearer tokens for API sessions."""

import hashlib
from typing import Any

from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from jobspark.core.config import get_settings

ACCESS_TOKEN_MAX_AGE = 7 * 24 * 3600  # 7 days


def get_token_serializer() -> URLSafeTimedSerializer:
    settings = get_settings()
    return URLSafeTimedSerializer(
        settings.secret_key,
        salt="jobspark-access-token",
        signer_kwargs={"key_derivation": "hmac", "digest_method": hashlib.sha256},
    )


def create_access_token(payload: dict[str, Any]) -> str:
    return get_token_serializer().dumps(payload)


def load_access_token(token: str, max_age_seconds: int = ACCESS_TOKEN_MAX_AGE) -> dict[str, Any] | None:
    """Return the token payload, or None if the signature is bad or the token expired."""
    serializer = get_token_serializer()
    try:
        payload = serializer.loads(token, max_age=max_age_seconds)
    except (BadSignature, SignatureExpired):
        return None
    return payload if isinstance(payload, dict) else None
