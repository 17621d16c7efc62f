from fastapi import APIRouter, Depends, Request

from jobspark.deps import payment_gateway
from jobspark.services import payments as payments_service
from jobspark.services.payfast import PayFastGateway

router = APIRouter()


@router.post("/notify")
async def payfast_notify(request: Request, gateway: PayFastGateway = Depends(payment_gateway)):
    """PayFast ITN: verify signature, finalize purchase (idempotent). Non-2xx makes PayFast retry."""
    fields = payments_service.parse_notification_body(await request.body())
    applied = await payments_service.handle_notification(fields, gateway)
    return {"status": "ok", "applied": applied}
