"""Shared FastAPI dependencies."""

from fastapi import Request

from jobspark.core.exceptions import AuthenticationError
from jobspark.core.logging import bind_user_id
from jobspark.services.payfast import PayFastGateway
from jobspark.services.payments import get_gateway
from jobspark.services.users import Caller, caller_from_token

BEARER_PREFIX = "bearer "


async def resolve_caller(request: Request) -> Caller:
    """Dependency: the caller identified by `Authorization: Bearer <token>`. No other source is consulted."""
    header = request.headers.get("Authorization") or ""
    if not header.lower().startswith(BEARER_PREFIX):
        raise AuthenticationError("Authentication required")
    token = header[len(BEARER_PREFIX):].strip()
    if not token:
        raise AuthenticationError("Authentication required")
    caller = await caller_from_token(token)
    bind_user_id(caller.user_id)
    return caller


def payment_gateway() -> PayFastGateway:
    """Dependency: gateway built from settings; 503 when PayFast is not configured."""
    return get_gateway()
