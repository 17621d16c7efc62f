from fastapi import APIRouter, Depends
from pydantic import BaseModel

from jobspark.deps import resolve_caller
from jobspark.services import users as user_service
from jobspark.services.users import Caller

router = APIRouter()


class GoogleAuthRequest(BaseModel):
    id_token: str


@router.post("/google")
async def auth_google(body: GoogleAuthRequest):
    """Exchange Google ID token for a bearer access token."""
    claims = user_service.verify_google_id_token(body.id_token)
    user = await user_service.upsert_user_from_google(claims)
    return {
        "access_token": user_service.issue_access_token(user),
        "token_type": "bearer",
        "user": {
            "id": str(user.id),
            "email": user.email,
            "name": user.name,
            "picture": user.picture,
        },
    }


@router.get("/me")
async def auth_me(caller: Caller = Depends(resolve_caller)):
    """Return the caller resolved from the bearer token."""
    return caller.model_dump()
