from jobspark.models.user import User
from jobspark.models.credit_balance import CreditBalance
from jobspark.models.credit_ledger import CreditLedgerEntry
from jobspark.models.credit_purchase import CreditPurchase, PurchaseStatus
from jobspark.models.audit_log import AuditLog

__all__ = [
    "User",
    "CreditBalance",
    "CreditLedgerEntry",
    "CreditPurchase",
    "PurchaseStatus",
    "AuditLog",
]
