import uuid
from datetime import datetime
from typing import Sequence
from sqlalchemy import select, func, and_
from sqlalchemy.ext.asyncio import AsyncSession
from careguard.modules.audit.models import AuditEvent

NEWEST_FIRST = (AuditEvent.occurred_at.desc(), AuditEvent.created_at.desc(), AuditEvent.id.desc())

def _activity(org_id: uuid.UUID, action: str, since: datetime, *,
              source_ip: str | None = None, actor_id: uuid.UUID | None = None,
              exclude_id: uuid.UUID | None = None):
    # window aggregation only looks at observed activity, never at earlier flags
    conds = [
        AuditEvent.org_id == org_id,
        AuditEvent.action_kind == action,
        AuditEvent.occurred_at >= since,
        AuditEvent.flagged.is_(False),
    ]
    if source_ip is not None:
        conds.append(AuditEvent.source_ip == source_ip)
    if actor_id is not None:
        conds.append(AuditEvent.actor_id == actor_id)
    if exclude_id is not None:
        conds.append(AuditEvent.id != exclude_id)
    return and_(*conds)

class AuditRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def add(self, event: AuditEvent) -> AuditEvent:
        self.session.add(event)
        await self.session.flush()
        return event

    async def get(self, org_id: uuid.UUID, event_id: uuid.UUID) -> AuditEvent | None:
        q = select(AuditEvent).where(AuditEvent.id == event_id, AuditEvent.org_id == org_id)
        res = await self.session.execute(q)
        return res.scalar_one_or_none()

    # ---- window queries ----

    async def count_since(self, org_id: uuid.UUID, action: str, since: datetime, **keys) -> int:
        q = select(func.count()).select_from(AuditEvent).where(_activity(org_id, action, since, **keys))
        res = await self.session.execute(q)
        return int(res.scalar_one())

    async def distinct_endpoints_since(self, org_id: uuid.UUID, action: str, since: datetime, **keys) -> set[str]:
        q = select(AuditEvent.endpoint).where(_activity(org_id, action, since, **keys)).distinct()
        res = await self.session.execute(q)
        return set(res.scalars().all())

    async def latest_activity(self, org_id: uuid.UUID, action: str | None = None, *,
                              source_ip: str | None = None, actor_id: uuid.UUID | None = None) -> AuditEvent | None:
        q = select(AuditEvent).where(AuditEvent.org_id == org_id, AuditEvent.flagged.is_(False))
        if action is not None:
            q = q.where(AuditEvent.action_kind == action)
        if source_ip is not None:
            q = q.where(AuditEvent.source_ip == source_ip)
        if actor_id is not None:
            q = q.where(AuditEvent.actor_id == actor_id)
        res = await self.session.execute(q.order_by(*NEWEST_FIRST).limit(1))
        return res.scalar_one_or_none()

    async def has_open_flag(self, org_id: uuid.UUID, rule_id: str, since: datetime, *,
                            source_ip: str | None = None, actor_id: uuid.UUID | None = None) -> bool:
        q = select(AuditEvent.id).where(
            AuditEvent.org_id == org_id,
            AuditEvent.rule_id == rule_id,
            AuditEvent.flagged.is_(True),
            AuditEvent.resolved.is_(False),
            AuditEvent.occurred_at >= since,
        )
        if source_ip is not None:
            q = q.where(AuditEvent.source_ip == source_ip)
        if actor_id is not None:
            q = q.where(AuditEvent.actor_id == actor_id)
        res = await self.session.execute(q.limit(1))
        return res.first() is not None

    # ---- operator views ----

    async def list_flagged(self, org_id: uuid.UUID, unresolved_only: bool, limit: int) -> Sequence[AuditEvent]:
        q = select(AuditEvent).where(AuditEvent.org_id == org_id, AuditEvent.flagged.is_(True))
        if unresolved_only:
            q = q.where(AuditEvent.resolved.is_(False))
        res = await self.session.execute(q.order_by(*NEWEST_FIRST).limit(limit))
        return res.scalars().all()

    async def page(self, org_id: uuid.UUID, page: int, limit: int, *,
                   action_kind: str | None = None, flagged: bool | None = None,
                   actor_id: uuid.UUID | None = None) -> tuple[Sequence[AuditEvent], int]:
        conds = [AuditEvent.org_id == org_id]
        if action_kind is not None:
            conds.append(AuditEvent.action_kind == action_kind)
        if flagged is not None:
            conds.append(AuditEvent.flagged.is_(flagged))
        if actor_id is not None:
            conds.append(AuditEvent.actor_id == actor_id)
        total = (await self.session.execute(
            select(func.count()).select_from(AuditEvent).where(*conds)
        )).scalar_one()
        q = select(AuditEvent).where(*conds).order_by(*NEWEST_FIRST).limit(limit).offset((page - 1) * limit)
        res = await self.session.execute(q)
        return res.scalars().all(), int(total)
