"""Feature gates: credit checks before, and charges after, CV generation and interview sessions."""

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from jobspark.core.exceptions import InsufficientCreditsError
from jobspark.deps import resolve_caller
from jobspark.services import credits as credits_service
from jobspark.services.credits import Feature
from jobspark.services.users import Caller

router = APIRouter()


class ChargeRequest(BaseModel):
    reference_id: str | None = None  # generated CV or interview session id


async def _check(caller: Caller, feature: Feature) -> dict:
    needed = credits_service.credit_cost(feature)
    has_credits = await credits_service.has_sufficient_credits(caller.user_id, needed)
    return {"has_credits": has_credits, "credits_needed": needed}


async def _charge(caller: Caller, feature: Feature, body: ChargeRequest | None) -> dict:
    cost = credits_service.credit_cost(feature)
    balance_after = await credits_service.charge_credits(
        caller.user_id,
        cost,
        reference_type=feature.value,
        reference_id=body.reference_id if body else None,
    )
    if balance_after is None:
        raise InsufficientCreditsError(cost, await credits_service.get_balance(caller.user_id))
    return {"charged": cost, "balance": balance_after}


@router.post("/cv/check-credits")
async def cv_check_credits(caller: Caller = Depends(resolve_caller)):
    return await _check(caller, Feature.CV_GENERATION)


@router.post("/interview/check-credits")
async def interview_check_credits(caller: Caller = Depends(resolve_caller)):
    return await _check(caller, Feature.INTERVIEW_SESSION)


@router.post("/cv/charge")
async def cv_charge(body: ChargeRequest | None = None, caller: Caller = Depends(resolve_caller)):
    """Debit the CV generation cost once a CV was produced; 402 if the balance is too low."""
    return await _charge(caller, Feature.CV_GENERATION, body)


@router.post("/interview/charge")
async def interview_charge(body: ChargeRequest | None = None, caller: Caller = Depends(resolve_caller)):
    """Debit the interview session cost; 402 if the balance is too low."""
    return await _charge(caller, Feature.INTERVIEW_SESSION, body)
