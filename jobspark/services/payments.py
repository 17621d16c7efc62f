"""PayFast checkout and ITN callback handling on top of the credits ledger."""

from collections.abc import Mapping
from decimal import Decimal, InvalidOperation
from urllib.parse import parse_qsl

from jobspark.core.audit import log_event
from jobspark.core.config import Settings, get_settings
from jobspark.core.exceptions import PaymentsNotConfiguredError, ValidationError
from jobspark.core.logging import get_logger
from jobspark.models.credit_purchase import CreditPurchase, PurchaseStatus
from jobspark.services import credits as credits_service
from jobspark.services.payfast import PAYMENT_COMPLETE, CheckoutRequest, PayFastConfig, PayFastGateway
from jobspark.services.users import Caller

log = get_logger(__name__)

NOTIFY_PATH = "/v1/payfast/notify"


def payfast_config_from_settings(settings: Settings) -> PayFastConfig:
    app_url = settings.app_base_url.rstrip("/")
    return PayFastConfig(
        merchant_id=settings.payfast_merchant_id,
        merchant_key=settings.payfast_merchant_key,
        passphrase=settings.payfast_passphrase,
        process_url=settings.payfast_process_url,
        return_url=f"{app_url}/credits/success",
        cancel_url=f"{app_url}/credits/cancelled",
        notify_url=f"{settings.api_base_url.rstrip('/')}{NOTIFY_PATH}",
    )


def get_gateway(settings: Settings | None = None) -> PayFastGateway:
    settings = settings or get_settings()
    if not settings.payfast_configured:
        raise PaymentsNotConfiguredError()
    return PayFastGateway(payfast_config_from_settings(settings))


async def initiate_checkout(
    caller: Caller,
    package_id: str,
    gateway: PayFastGateway,
) -> tuple[CreditPurchase, CheckoutRequest]:
    """Open a pending purchase for a catalog package and sign the PayFast request for it."""
    package = credits_service.get_package(package_id)
    purchase = await credits_service.create_purchase(
        caller.user_id,
        package.credits,
        package.price_cents,
        package_id=package.id,
    )
    await log_event(
        caller.user_id,
        "purchase_created",
        credits_service.PURCHASE_REFERENCE,
        purchase.purchase_id,
        {"package_id": package.id, "credits": package.credits, "price_cents": package.price_cents},
    )
    checkout = gateway.build_checkout_request(
        purchase.purchase_id,
        caller.email,
        caller.name,
        package.credits,
        package.price_cents,
    )
    return purchase, checkout


def parse_notification_body(body: bytes) -> dict[str, str]:
    """Decode a form-encoded ITN body, keeping field order and blank values (both are signed)."""
    try:
        text = body.decode("utf-8")
    except UnicodeDecodeError as e:
        raise ValidationError("Malformed notification body") from e
    return dict(parse_qsl(text, keep_blank_values=True))


def _amount_matches(amount_gross: str, price_cents: int) -> bool:
    try:
        return Decimal(amount_gross.strip()) * 100 == Decimal(price_cents)
    except InvalidOperation:
        return False


async def handle_notification(fields: Mapping[str, str], gateway: PayFastGateway) -> bool:
    """
    Verify a PayFast ITN and finalize the purchase it refers to.
    Returns True if this notification moved the purchase out of pending, False for a replay.
    """
    if not gateway.verify_callback(fields):
        log.warning("callback_rejected", reason="invalid_signature", m_payment_id=fields.get("m_payment_id"))
        raise ValidationError("Invalid signature")
    purchase_id = (fields.get("m_payment_id") or "").strip()
    if not purchase_id:
        log.warning("callback_rejected", reason="missing_m_payment_id")
        raise ValidationError("Missing m_payment_id")
    merchant_id = fields.get("merchant_id")
    if merchant_id and merchant_id != gateway.config.merchant_id:
        log.warning("callback_rejected", reason="merchant_mismatch", purchase_id=purchase_id)
        raise ValidationError("Merchant mismatch")

    purchase = await credits_service.get_purchase(purchase_id)
    amount_gross = fields.get("amount_gross")
    if amount_gross and not _amount_matches(amount_gross, purchase.price_cents):
        log.warning(
            "callback_rejected",
            reason="amount_mismatch",
            purchase_id=purchase_id,
            amount_gross=amount_gross,
            price_cents=purchase.price_cents,
        )
        raise ValidationError("Amount mismatch")
    echoed = {"custom_str1": purchase.purchase_id, "custom_str2": str(purchase.credits_amount)}
    mismatched = [name for name, expected in echoed.items() if name in fields and fields[name] != expected]
    if mismatched:
        log.warning(
            "callback_rejected",
            reason="custom_field_mismatch",
            purchase_id=purchase_id,
            fields=mismatched,
        )
        raise ValidationError("Custom field mismatch", details={"fields": mismatched})

    payment_status = (fields.get("payment_status") or "").strip().upper()
    outcome = PurchaseStatus.COMPLETED if payment_status == PAYMENT_COMPLETE else PurchaseStatus.FAILED
    applied = await credits_service.finalize_purchase(purchase_id, fields.get("pf_payment_id"), outcome)
    if applied:
        await log_event(
            purchase.user_id,
            f"purchase_{outcome.value}",
            credits_service.PURCHASE_REFERENCE,
            purchase_id,
            {
                "payment_status": payment_status,
                "pf_payment_id": fields.get("pf_payment_id"),
                "credits": purchase.credits_amount,
            },
        )
    return applied
