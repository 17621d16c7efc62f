from typing import Literal

from fastapi import APIRouter, Depends, Query
from fastapi.responses import HTMLResponse
from pydantic import BaseModel

from jobspark.core.pagination import page_of
from jobspark.deps import payment_gateway, resolve_caller
from jobspark.services import credits as credits_service
from jobspark.services import payments as payments_service
from jobspark.services.payfast import PayFastGateway
from jobspark.services.users import Caller

router = APIRouter()


class PurchaseRequest(BaseModel):
    package_id: str


@router.get("/balance")
async def credits_balance(caller: Caller = Depends(resolve_caller)):
    """Return current credit balance and lifetime totals."""
    account = await credits_service.get_account(caller.user_id)
    return {
        "balance": account.balance if account else 0,
        "total_purchased": account.total_purchased if account else 0,
        "total_used": account.total_used if account else 0,
    }


@router.get("/packages")
async def credits_packages():
    """Credit packages on sale and the credit cost of each feature."""
    return {
        "packages": [
            {**p.model_dump(), "price": credits_service.format_price(p.price_cents)}
            for p in credits_service.CREDIT_PACKAGES
        ],
        "costs": credits_service.get_pricing(),
    }


@router.get("/ledger")
async def credits_ledger(
    caller: Caller = Depends(resolve_caller),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
):
    """Return ledger entries for current user (newest first)."""
    entries, total = await credits_service.list_ledger(caller.user_id, limit, offset)
    out = [
        {
            "id": str(e.id),
            "amount": e.amount,
            "balance_after": e.balance_after,
            "reason": e.reason,
            "reference_type": e.reference_type,
            "reference_id": e.reference_id,
            "created_at": e.created_at.isoformat(),
        }
        for e in entries
    ]
    return page_of(out, limit, offset, total)


@router.get("/purchases")
async def credits_purchases(
    caller: Caller = Depends(resolve_caller),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
):
    """Return purchase records for current user (newest first)."""
    purchases, total = await credits_service.list_purchases(caller.user_id, limit, offset)
    out = [
        {
            "purchase_id": p.purchase_id,
            "package_id": p.package_id,
            "credits_amount": p.credits_amount,
            "price": credits_service.format_price(p.price_cents),
            "status": p.status.value,
            "created_at": p.created_at.isoformat(),
            "completed_at": p.completed_at.isoformat() if p.completed_at else None,
        }
        for p in purchases
    ]
    return page_of(out, limit, offset, total)


@router.post("/purchase")
async def credits_purchase(
    body: PurchaseRequest,
    response_format: Literal["json", "html"] = Query("json", alias="format"),
    caller: Caller = Depends(resolve_caller),
    gateway: PayFastGateway = Depends(payment_gateway),
):
    """Open a pending purchase and return the signed PayFast checkout (JSON, or an auto-submit HTML form)."""
    purchase, checkout = await payments_service.initiate_checkout(caller, body.package_id, gateway)
    if response_format == "html":
        return HTMLResponse(gateway.render_checkout_form(checkout))
    return {
        "purchase_id": purchase.purchase_id,
        "status": purchase.status.value,
        "redirect_url": checkout.redirect_url,
        "form_fields": checkout.form_fields,
    }
