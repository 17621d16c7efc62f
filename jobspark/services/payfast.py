"""PayFast hosted checkout: signed outbound payment requests and ITN callback verification.

PayFast signs a request by joining the non-empty fields, in the order they are
sent, as ``key=quote_plus(value)`` pairs separated by ``&``, appending the
merchant passphrase as a final ``passphrase=`` pair and taking the MD5 hex
digest. The same routine verifies Instant Transaction Notifications (ITN),
which echo ``custom_str1`` (purchase id) and ``custom_str2`` (credit amount).
"""

import hashlib
import hmac
from collections.abc import Mapping
from html import escape
from typing import Any
from urllib.parse import quote_plus

from pydantic import BaseModel, ConfigDict

from jobspark.core.logging import get_logger

log = get_logger(__name__)

SIGNATURE_FIELD = "signature"
PAYMENT_COMPLETE = "COMPLETE"
PRODUCT_NAME = "JobSpark Credits"


class PayFastConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    merchant_id: str
    merchant_key: str
    passphrase: str
    process_url: str
    return_url: str
    cancel_url: str
    notify_url: str


class CheckoutRequest(BaseModel):
    redirect_url: str
    form_fields: dict[str, str]


class PayFastGateway:
    """Translates purchases into PayFast form posts and checks PayFast's signed callbacks."""

    def __init__(self, config: PayFastConfig):
        self.config = config

    def generate_signature(self, fields: Mapping[str, Any]) -> str:
        pairs = []
        for key, value in fields.items():
            if key == SIGNATURE_FIELD or value is None:
                continue
            text = str(value).strip()
            if not text:
                continue
            pairs.append(f"{key}={quote_plus(text)}")
        passphrase = self.config.passphrase.strip()
        if passphrase:
            pairs.append(f"passphrase={quote_plus(passphrase)}")
        return hashlib.md5("&".join(pairs).encode("utf-8")).hexdigest()

    def build_checkout_request(
        self,
        purchase_id: str,
        payer_email: str,
        payer_name: str,
        credit_amount: int,
        price_cents: int,
    ) -> CheckoutRequest:
        """Signed form fields for the hosted payment page. Same inputs give the same output."""
        first, _, last = (payer_name or "").strip().partition(" ")
        fields = {
            "merchant_id": self.config.merchant_id,
            "merchant_key": self.config.merchant_key,
            "return_url": self.config.return_url,
            "cancel_url": self.config.cancel_url,
            "notify_url": self.config.notify_url,
            "name_first": first or "User",
            "name_last": last.strip(),
            "email_address": payer_email,
            "m_payment_id": purchase_id,
            "amount": f"{price_cents // 100}.{price_cents % 100:02d}",
            "item_name": f"{credit_amount} {PRODUCT_NAME}",
            "item_description": f"Purchase {credit_amount} credits for interview practice and CV generation",
            "custom_str1": purchase_id,
            "custom_str2": str(credit_amount),
        }
        fields[SIGNATURE_FIELD] = self.generate_signature(fields)
        return CheckoutRequest(redirect_url=self.config.process_url, form_fields=fields)

    def verify_callback(self, notification_fields: Mapping[str, str]) -> bool:
        """
        True only if the notification carries a signature matching its other fields.
        Forged, altered or malformed notifications return False; this never raises.
        """
        if not self.config.passphrase.strip():
            log.warning("callback_verify_skipped", reason="passphrase_not_configured")
            return False
        if not isinstance(notification_fields, Mapping):
            return False
        received = notification_fields.get(SIGNATURE_FIELD)
        if not isinstance(received, str) or not received.strip():
            return False
        try:
            expected = self.generate_signature(notification_fields)
            return hmac.compare_digest(expected, received.strip().lower())
        except (TypeError, ValueError, UnicodeError) as e:
            log.warning("callback_malformed", error=str(e))
            return False

    def render_checkout_form(self, request: CheckoutRequest) -> str:
        """HTML page that auto-posts the signed fields to PayFast."""
        inputs = "\n".join(
            f'      <input type="hidden" name="{escape(name)}" value="{escape(value)}">'
            for name, value in request.form_fields.items()
        )
        return f"""<!DOCTYPE html>
<html>
  <head>
    <title>Redirecting to PayFast...</title>
  </head>
  <body>
    <p>Redirecting to PayFast to complete your payment...</p>
    <form id="payfast-form" action="{escape(request.redirect_url)}" method="post">
{inputs}
    </form>
    <script>document.getElementById("payfast-form").submit();</script>
  </body>
</html>
"""
