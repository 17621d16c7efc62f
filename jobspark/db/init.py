import certifi
from beanie import init_beanie
from motor.motor_asyncio import AsyncIOMotorClient

from jobspark.core.config import get_settings
from jobspark.models.audit_log import AuditLog
from jobspark.models.credit_balance import CreditBalance
from jobspark.models.credit_ledger import CreditLedgerEntry
from jobspark.models.credit_purchase import CreditPurchase
from jobspark.models.user import User

DOCUMENT_MODELS = [
    User,
    CreditBalance,
    CreditLedgerEntry,
    CreditPurchase,
    AuditLog,
]


def _use_tls(uri: str) -> bool:
    """True if URI uses TLS (Atlas or explicit tls=true). Avoids TLS for plain mongodb:// in CI."""
    return "mongodb+srv://" in uri or "tls=true" in uri.lower()


async def init_db(database=None) -> None:
    """Bind document models to `database`, or to the configured MongoDB when omitted."""
    if database is None:
        settings = get_settings()
        kwargs = {}
        if _use_tls(settings.mongodb_uri):
            kwargs["tlsCAFile"] = certifi.where()
            kwargs["tlsDisableOCSPEndpointCheck"] = True
        client = AsyncIOMotorClient(settings.mongodb_uri, **kwargs)
        database = client[settings.mongodb_db_name]
    await init_beanie(database=database, document_models=DOCUMENT_MODELS)
