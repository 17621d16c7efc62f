"""Audit trail for purchase and identity events."""

from typing import Any

from pymongo.errors import PyMongoError

from jobspark.core.logging import get_logger
from jobspark.models.audit_log import AuditLog

log = get_logger(__name__)


async def log_event(
    user_id: str | None,
    event_type: str,
    entity_type: str,
    entity_id: str | None = None,
    metadata: dict[str, Any] | None = None,
) -> AuditLog | None:
    """Append to audit_logs collection. A failed write is logged and never fails the caller."""
    entry = AuditLog(
        user_id=user_id,
        event_type=event_type,
        entity_type=entity_type,
        entity_id=entity_id,
        metadata=metadata or {},
    )
    try:
        await entry.insert()
    except PyMongoError as e:
        # The audited change is already committed
        log.error("audit_write_failed", event_type=event_type, entity_id=entity_id, error=str(e))
        return None
    log.debug("audit_event", event_type=event_type, entity_type=entity_type, entity_id=entity_id)
    return entry
