"""Audit trail for balance changes, payments and job transitions."""

from typing import Any

from enrichdesk.core.logging import get_logger
from enrichdesk.models.audit_log import AuditLog

log = get_logger(__name__)


async def log_event(
    actor_id: str | None,
    event_type: str,
    entity_type: str,
    entity_id: str | None = None,
    metadata: dict[str, Any] | None = None,
) -> AuditLog:
    entry = AuditLog(
        actor_id=actor_id,
        event_type=event_type,
        entity_type=entity_type,
        entity_id=entity_id,
        metadata=metadata or {},
    )
    await entry.insert()
    log.debug("audit_event", event_type=event_type, entity_type=entity_type, entity_id=entity_id, actor_id=actor_id)
    return entry
