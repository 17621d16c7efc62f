"""Credits ledger: balances, purchase records and atomic balance updates.

Balances and purchase status are only ever written here. Every mutation that
matters for correctness is a single conditional update against MongoDB:

- debits use ``balance >= amount`` in the filter, so a balance never goes
  negative and two concurrent debits cannot both spend the same credits;
- finalizing a purchase claims it with ``status == "pending"`` in the filter,
  so a replayed gateway callback can credit the account at most once;
- the balance row records every purchase it was credited for, so a retry
  after a lost write reply cannot add the same purchase twice.
"""

from contextlib import contextmanager
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict
from pymongo import ReturnDocument
from pymongo.errors import PyMongoError

from jobspark.core.config import get_settings
from jobspark.core.exceptions import NotFoundError, PersistenceError, ValidationError
from jobspark.core.logging import get_logger
from jobspark.core.pagination import paginate
from jobspark.models.credit_balance import CreditBalance
from jobspark.models.credit_ledger import CreditLedgerEntry, LedgerReason
from jobspark.models.credit_purchase import CreditPurchase, PurchaseStatus

log = get_logger(__name__)

PURCHASE_REFERENCE = "credit_purchase"


class CreditPackage(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    credits: int
    price_cents: int
    popular: bool = False
    description: str = ""


CREDIT_PACKAGES: tuple[CreditPackage, ...] = (
    CreditPackage(
        id="package_150",
        credits=150,
        price_cents=1500,
        description="Perfect for occasional practice",
    ),
    CreditPackage(
        id="package_500",
        credits=500,
        price_cents=5000,
        popular=True,
        description="Great value for regular users",
    ),
    CreditPackage(
        id="package_1000",
        credits=1000,
        price_cents=10000,
        description="Best value for power users",
    ),
)


class Feature(str, Enum):
    CV_GENERATION = "cv_generation"
    INTERVIEW_SESSION = "interview_session"


def get_package(package_id: str) -> CreditPackage:
    for package in CREDIT_PACKAGES:
        if package.id == package_id:
            return package
    raise ValidationError("Invalid package selected", details={"package_id": package_id})


def get_pricing() -> dict[str, int]:
    s = get_settings()
    return {
        Feature.CV_GENERATION.value: s.credits_per_cv_generation,
        Feature.INTERVIEW_SESSION.value: s.credits_per_interview_session,
    }


def credit_cost(feature: Feature) -> int:
    return get_pricing()[Feature(feature).value]


def format_price(cents: int) -> str:
    return f"R{cents // 100}.{cents % 100:02d}"


@contextmanager
def _store_errors(operation: str):
    try:
        yield
    except PyMongoError as e:
        log.error("ledger_store_error", operation=operation, error=str(e))
        raise PersistenceError("Credit store unavailable, please retry") from e


# --- Balances ---


async def get_account(user_id: str) -> CreditBalance | None:
    with _store_errors("get_account"):
        return await CreditBalance.find_one(CreditBalance.user_id == user_id)


async def get_balance(user_id: str) -> int:
    """Return current balance for user (0 if no record)."""
    account = await get_account(user_id)
    return account.balance if account else 0


async def has_sufficient_credits(user_id: str, required_amount: int) -> bool:
    return await get_balance(user_id) >= required_amount


async def charge_credits(
    user_id: str,
    amount: int,
    reference_type: str | None = None,
    reference_id: str | None = None,
) -> int | None:
    """
    Spend `amount` credits and return the balance right after this debit,
    or None, changing nothing, when the balance is too low.
    The check and the decrement are one conditional update.
    """
    if amount <= 0:
        raise ValidationError("Debit amount must be positive", details={"amount": amount})
    with _store_errors("debit_credits"):
        updated = await CreditBalance.get_motor_collection().find_one_and_update(
            {"user_id": user_id, "balance": {"$gte": amount}},
            {
                "$inc": {"balance": -amount, "total_used": amount},
                "$set": {"updated_at": datetime.utcnow()},
            },
            return_document=ReturnDocument.AFTER,
        )
    if updated is None:
        log.info("debit_refused", user_id=user_id, amount=amount, reason="insufficient_credits")
        return None
    balance_after = updated["balance"]
    await _append_ledger(user_id, -amount, balance_after, "usage", reference_type, reference_id)
    log.info("credits_debited", user_id=user_id, amount=amount, balance_after=balance_after)
    return balance_after


async def debit_credits(
    user_id: str,
    amount: int,
    reference_type: str | None = None,
    reference_id: str | None = None,
) -> bool:
    """Spend `amount` credits. Returns False, changing nothing, when the balance is too low."""
    return await charge_credits(user_id, amount, reference_type, reference_id) is not None


async def _credit_balance(user_id: str, amount: int, purchase_id: str) -> tuple[int, bool]:
    """
    Add a purchase's credits, creating the balance row on first use.
    Returns (balance after, whether this call applied the credit). The purchase id is
    recorded in the same update, so a retry after a lost reply never credits twice.
    """
    now = datetime.utcnow()
    collection = CreditBalance.get_motor_collection()
    with _store_errors("credit_balance"):
        await collection.update_one(
            {"user_id": user_id},
            {
                "$setOnInsert": {
                    "balance": 0,
                    "total_purchased": 0,
                    "total_used": 0,
                    "applied_purchase_ids": [],
                    "created_at": now,
                    "updated_at": now,
                }
            },
            upsert=True,
        )
        updated = await collection.find_one_and_update(
            {"user_id": user_id, "applied_purchase_ids": {"$ne": purchase_id}},
            {
                "$inc": {"balance": amount, "total_purchased": amount},
                "$addToSet": {"applied_purchase_ids": purchase_id},
                "$set": {"updated_at": now},
            },
            return_document=ReturnDocument.AFTER,
        )
        if updated is not None:
            return updated["balance"], True
        current = await collection.find_one({"user_id": user_id})
    return current["balance"], False


async def _has_purchase_entry(purchase_id: str) -> bool:
    with _store_errors("has_purchase_entry"):
        entry = await CreditLedgerEntry.find_one(
            CreditLedgerEntry.reference_type == PURCHASE_REFERENCE,
            CreditLedgerEntry.reference_id == purchase_id,
        )
    return entry is not None


async def _append_ledger(
    user_id: str,
    amount: int,
    balance_after: int,
    reason: LedgerReason,
    reference_type: str | None,
    reference_id: str | None,
) -> None:
    entry = CreditLedgerEntry(
        user_id=user_id,
        amount=amount,
        balance_after=balance_after,
        reason=reason,
        reference_type=reference_type,
        reference_id=reference_id,
    )
    try:
        await entry.insert()
    except PyMongoError as e:
        # Balance already moved; the history gap is logged, not raised.
        log.error(
            "ledger_entry_write_failed",
            user_id=user_id,
            amount=amount,
            reason=reason,
            reference_id=reference_id,
            error=str(e),
        )


# --- Purchases ---


async def create_purchase(
    user_id: str,
    credit_amount: int,
    price_cents: int,
    package_id: str | None = None,
) -> CreditPurchase:
    """Insert a pending purchase record. Does not touch the balance."""
    if credit_amount <= 0:
        raise ValidationError("Credit amount must be positive", details={"credit_amount": credit_amount})
    if price_cents < 0:
        raise ValidationError("Price cannot be negative", details={"price_cents": price_cents})
    purchase = CreditPurchase(
        user_id=user_id,
        package_id=package_id,
        credits_amount=credit_amount,
        price_cents=price_cents,
        currency=get_settings().currency,
    )
    with _store_errors("create_purchase"):
        await purchase.insert()
    log.info(
        "purchase_created",
        purchase_id=purchase.purchase_id,
        user_id=user_id,
        credits=credit_amount,
        price=format_price(price_cents),
    )
    return purchase


async def get_purchase(purchase_id: str) -> CreditPurchase:
    with _store_errors("get_purchase"):
        purchase = await CreditPurchase.find_one(CreditPurchase.purchase_id == purchase_id)
    if not purchase:
        raise NotFoundError("Purchase not found")
    return purchase


async def finalize_purchase(
    purchase_id: str,
    external_payment_id: str | None,
    outcome: PurchaseStatus,
) -> bool:
    """
    Move a pending purchase to `outcome` and, when completed, credit the owner.
    Returns False without side effects if the purchase is already completed or failed.
    """
    try:
        outcome = PurchaseStatus(outcome)
    except ValueError:
        raise ValidationError("Invalid purchase outcome", details={"outcome": str(outcome)}) from None
    if outcome == PurchaseStatus.PENDING:
        raise ValidationError("Invalid purchase outcome", details={"outcome": outcome.value})

    now = datetime.utcnow()
    changes = {
        "status": outcome.value,
        "external_payment_id": external_payment_id,
        "updated_at": now,
    }
    if outcome == PurchaseStatus.COMPLETED:
        changes["completed_at"] = now
    collection = CreditPurchase.get_motor_collection()
    with _store_errors("finalize_purchase"):
        claimed = await collection.find_one_and_update(
            {"purchase_id": purchase_id, "status": PurchaseStatus.PENDING.value},
            {"$set": changes},
            return_document=ReturnDocument.AFTER,
        )
    if claimed is None:
        existing = await get_purchase(purchase_id)
        log.info(
            "purchase_already_finalized",
            purchase_id=purchase_id,
            status=existing.status.value,
            callback_outcome=outcome.value,
        )
        return False

    user_id = claimed["user_id"]
    credits = claimed["credits_amount"]
    if outcome == PurchaseStatus.FAILED:
        log.info("purchase_finalized", purchase_id=purchase_id, user_id=user_id, status=outcome.value)
        return True

    try:
        balance_after, newly_applied = await _credit_balance(user_id, credits, purchase_id)
    except PersistenceError:
        await _reopen_purchase(purchase_id, external_payment_id)
        raise
    if newly_applied:
        await _append_ledger(user_id, credits, balance_after, "purchase", PURCHASE_REFERENCE, purchase_id)
    else:
        # An earlier attempt credited the balance but its reply was lost
        log.warning("purchase_credit_already_applied", purchase_id=purchase_id, user_id=user_id)
        if not await _has_purchase_entry(purchase_id):
            await _append_ledger(user_id, credits, balance_after, "purchase", PURCHASE_REFERENCE, purchase_id)
    log.info(
        "purchase_finalized",
        purchase_id=purchase_id,
        user_id=user_id,
        status=outcome.value,
        credits=credits,
        balance_after=balance_after,
    )
    return True


async def _reopen_purchase(purchase_id: str, external_payment_id: str | None) -> None:
    """Undo a completed transition whose balance credit failed, so a gateway retry can apply it."""
    try:
        await CreditPurchase.get_motor_collection().update_one(
            {
                "purchase_id": purchase_id,
                "status": PurchaseStatus.COMPLETED.value,
                "external_payment_id": external_payment_id,
            },
            {
                "$set": {
                    "status": PurchaseStatus.PENDING.value,
                    "external_payment_id": None,
                    "completed_at": None,
                    "updated_at": datetime.utcnow(),
                }
            },
        )
        log.warning("purchase_reopened", purchase_id=purchase_id)
    except PyMongoError as e:
        log.error("purchase_reopen_failed", purchase_id=purchase_id, error=str(e))


# --- History ---


async def list_ledger(user_id: str, limit: int = 50, offset: int = 0) -> tuple[list[CreditLedgerEntry], int]:
    """Return (entries newest first, total count)."""
    limit, offset = paginate(limit, offset)
    with _store_errors("list_ledger"):
        total = await CreditLedgerEntry.find(CreditLedgerEntry.user_id == user_id).count()
        entries = (
            await CreditLedgerEntry.find(CreditLedgerEntry.user_id == user_id)
            .sort(-CreditLedgerEntry.created_at, -CreditLedgerEntry.id)
            .skip(offset)
            .limit(limit)
            .to_list()
        )
    return entries, total


async def list_purchases(user_id: str, limit: int = 50, offset: int = 0) -> tuple[list[CreditPurchase], int]:
    """Return (purchases newest first, total count)."""
    limit, offset = paginate(limit, offset)
    with _store_errors("list_purchases"):
        total = await CreditPurchase.find(CreditPurchase.user_id == user_id).count()
        purchases = (
            await CreditPurchase.find(CreditPurchase.user_id == user_id)
            .sort(-CreditPurchase.created_at, -CreditPurchase.id)
            .skip(offset)
            .limit(limit)
            .to_list()
        )
    return purchases, total
