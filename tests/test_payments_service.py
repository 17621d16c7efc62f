"""Checkout and ITN handling end to end through the ledger."""

import pytest
from pymongo.errors import ServerSelectionTimeoutError

from jobspark.core.exceptions import NotFoundError, ValidationError
from jobspark.models.audit_log import AuditLog
from jobspark.models.credit_purchase import PurchaseStatus
from jobspark.services import credits as credits_service
from jobspark.services import payments as payments_service
from jobspark.services.users import Caller

pytestmark = pytest.mark.asyncio

CALLER = Caller(user_id="user-42", email="thandi@example.com", name="Thandi Mokoena")


async def test_purchase_then_spend_scenario(db, gateway, itn_payload):
    assert await credits_service.has_sufficient_credits(CALLER.user_id, 30) is False

    purchase = await credits_service.create_purchase(CALLER.user_id, 50, 5000)
    assert purchase.status == PurchaseStatus.PENDING

    fields = itn_payload(purchase, payment_status="COMPLETE")
    assert fields["custom_str2"] == "50"
    assert await payments_service.handle_notification(fields, gateway) is True

    assert await credits_service.get_balance(CALLER.user_id) == 50
    assert await credits_service.has_sufficient_credits(CALLER.user_id, 30) is True
    assert await credits_service.debit_credits(CALLER.user_id, 30) is True
    assert await credits_service.get_balance(CALLER.user_id) == 20


async def test_duplicate_callback_credits_once(db, gateway, itn_payload):
    purchase = await credits_service.create_purchase(CALLER.user_id, 50, 5000)
    fields = itn_payload(purchase)
    assert await payments_service.handle_notification(fields, gateway) is True
    assert await payments_service.handle_notification(dict(fields), gateway) is False
    assert await credits_service.get_balance(CALLER.user_id) == 50
    completed = await AuditLog.find(AuditLog.event_type == "purchase_completed").count()
    assert completed == 1


async def test_tampered_amount_is_rejected(db, gateway, itn_payload):
    purchase = await credits_service.create_purchase(CALLER.user_id, 50, 5000)
    fields = itn_payload(purchase)
    fields["amount_gross"] = "5.00"  # stale signature
    assert gateway.verify_callback(fields) is False
    with pytest.raises(ValidationError):
        await payments_service.handle_notification(fields, gateway)
    stored = await credits_service.get_purchase(purchase.purchase_id)
    assert stored.status == PurchaseStatus.PENDING
    assert await credits_service.get_balance(CALLER.user_id) == 0


@pytest.mark.parametrize("status", ["FAILED", "CANCELLED"])
async def test_unsuccessful_payment_marks_failed(db, gateway, itn_payload, status):
    purchase = await credits_service.create_purchase(CALLER.user_id, 50, 5000)
    assert await payments_service.handle_notification(itn_payload(purchase, payment_status=status), gateway) is True
    stored = await credits_service.get_purchase(purchase.purchase_id)
    assert stored.status == PurchaseStatus.FAILED
    assert stored.external_payment_id == "1089250"
    assert await credits_service.get_balance(CALLER.user_id) == 0

    # A later COMPLETE for the same purchase is ignored
    assert await payments_service.handle_notification(itn_payload(purchase), gateway) is False
    assert await credits_service.get_balance(CALLER.user_id) == 0


async def test_signed_amount_mismatch_is_rejected(db, gateway, itn_payload):
    purchase = await credits_service.create_purchase(CALLER.user_id, 50, 5000)
    fields = itn_payload(purchase, amount_gross="5.00")  # correctly signed, wrong amount
    with pytest.raises(ValidationError):
        await payments_service.handle_notification(fields, gateway)
    assert (await credits_service.get_purchase(purchase.purchase_id)).status == PurchaseStatus.PENDING


async def test_merchant_mismatch_is_rejected(db, gateway, itn_payload):
    purchase = await credits_service.create_purchase(CALLER.user_id, 50, 5000)
    with pytest.raises(ValidationError):
        await payments_service.handle_notification(itn_payload(purchase, merchant_id="99999999"), gateway)


async def test_missing_payment_id_is_rejected(db, gateway, itn_payload):
    purchase = await credits_service.create_purchase(CALLER.user_id, 50, 5000)
    with pytest.raises(ValidationError):
        await payments_service.handle_notification(itn_payload(purchase, m_payment_id=""), gateway)


async def test_unknown_purchase(db, gateway, itn_payload):
    purchase = await credits_service.create_purchase(CALLER.user_id, 50, 5000)
    with pytest.raises(NotFoundError):
        await payments_service.handle_notification(itn_payload(purchase, m_payment_id="not-a-purchase"), gateway)


async def test_initiate_checkout(db, gateway):
    purchase, checkout = await payments_service.initiate_checkout(CALLER, "package_150", gateway)
    assert purchase.status == PurchaseStatus.PENDING
    assert purchase.credits_amount == 150
    assert purchase.price_cents == 1500
    assert purchase.package_id == "package_150"
    assert checkout.form_fields["m_payment_id"] == purchase.purchase_id
    assert checkout.form_fields["custom_str2"] == "150"
    assert checkout.form_fields["amount"] == "15.00"
    assert checkout.form_fields["email_address"] == CALLER.email
    assert checkout.form_fields["return_url"] == "https://app.jobspark.test/credits/success"
    assert checkout.form_fields["notify_url"] == "https://api.jobspark.test/v1/payfast/notify"
    assert await credits_service.get_balance(CALLER.user_id) == 0
    assert await AuditLog.find(AuditLog.event_type == "purchase_created").count() == 1


async def test_initiate_checkout_unknown_package(db, gateway):
    with pytest.raises(ValidationError):
        await payments_service.initiate_checkout(CALLER, "package_42", gateway)
    purchases, total = await credits_service.list_purchases(CALLER.user_id)
    assert total == 0



@pytest.mark.parametrize(
    "overrides",
    [
        {"custom_str1": "another-purchase"},
        {"custom_str2": "5000"},
    ],
)
async def test_custom_field_mismatch_is_rejected(db, gateway, itn_payload, overrides):
    purchase = await credits_service.create_purchase(CALLER.user_id, 50, 5000)
    with pytest.raises(ValidationError):
        await payments_service.handle_notification(itn_payload(purchase, **overrides), gateway)
    assert (await credits_service.get_purchase(purchase.purchase_id)).status == PurchaseStatus.PENDING
    assert await credits_service.get_balance(CALLER.user_id) == 0


async def _unavailable_insert(self, *args, **kwargs):
    raise ServerSelectionTimeoutError("no servers available")


async def test_audit_failure_does_not_fail_checkout(db, gateway, monkeypatch):
    monkeypatch.setattr(AuditLog, "insert", _unavailable_insert)
    purchase, checkout = await payments_service.initiate_checkout(CALLER, "package_150", gateway)
    assert checkout.form_fields["m_payment_id"] == purchase.purchase_id
    assert (await credits_service.get_purchase(purchase.purchase_id)).status == PurchaseStatus.PENDING


async def test_audit_failure_does_not_fail_notification(db, gateway, itn_payload, monkeypatch):
    purchase = await credits_service.create_purchase(CALLER.user_id, 50, 5000)
    monkeypatch.setattr(AuditLog, "insert", _unavailable_insert)
    assert await payments_service.handle_notification(itn_payload(purchase), gateway) is True
    assert await credits_service.get_balance(CALLER.user_id) == 50
