"""Audit trail for test-result operations."""

import logging
from dataclasses import dataclass, field

from sqlalchemy.ext.asyncio import AsyncSession

from testintake.models.audit_log import AuditAction, AuditLog

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RequestContext:
    """Network details of the request that triggered an operation."""

    ip_address: str | None = None
    user_agent: str | None = None


@dataclass(frozen=True)
class AuditEvent:
    user_id: str
    action: AuditAction
    resource_id: str
    resource_type: str = "test_result"
    context: RequestContext = field(default_factory=RequestContext)
    details: dict | None = None


class AuditTrail:
    """Writes audit rows in the caller's session, so they commit with the change."""

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def record(self, event: AuditEvent) -> AuditLog:
        entry = AuditLog(
            user_id=event.user_id,
            action=event.action,
            resource_type=event.resource_type,
            resource_id=event.resource_id,
            ip_address=event.context.ip_address,
            user_agent=(event.context.user_agent or "")[:512] or None,
            details=event.details,
        )
        self.db.add(entry)
        await self.db.flush()
        logger.info(
            "audit %s by user %s on %s %s",
            event.action.value,
            event.user_id,
            event.resource_type,
            event.resource_id,
        )
        return entry
