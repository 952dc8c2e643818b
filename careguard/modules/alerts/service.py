import logging
import uuid
from sqlalchemy.ext.asyncio import AsyncSession
from careguard.core.config import settings
from careguard.core.errors import NotFound
from careguard.core.paging import Page, page_count
from careguard.modules.audit.models import AuditEvent
from careguard.modules.audit.repository import AuditRepository
from careguard.modules.alerts.schemas import AuditEventOut

log = logging.getLogger("alerts.service")

class AlertService:
    def __init__(self, session: AsyncSession):
        self.session = session
        self.repo = AuditRepository(session)

    async def list_alerts(self, org_id: uuid.UUID, unresolved_only: bool = True,
                          limit: int | None = None) -> list[AuditEventOut]:
        cap = settings.ALERT_LIST_CAP
        rows = await self.repo.list_flagged(org_id, unresolved_only, min(limit or cap, cap))
        return [AuditEventOut.from_event(r) for r in rows]

    async def audit_trail(self, org_id: uuid.UUID, page: int = 1, limit: int = 50, **filters) -> Page[AuditEventOut]:
        rows, total = await self.repo.page(org_id, page, limit, **filters)
        return Page[AuditEventOut](
            items=[AuditEventOut.from_event(r) for r in rows],
            total_count=total,
            page=page,
            page_count=page_count(total, limit),
        )

    async def resolve(self, org_id: uuid.UUID, event_id: uuid.UUID, resolved_by: uuid.UUID | None = None) -> AuditEvent:
        ev = await self.repo.get(org_id, event_id)
        # only flagged events are alerts; resolved implies flagged
        if ev is None or not ev.flagged:
            raise NotFound("Alert not found.")
        if not ev.resolved:
            ev.resolved = True
            await self.session.commit()
            log.info("Alert %s resolved by %s", event_id, resolved_by)
        return ev
