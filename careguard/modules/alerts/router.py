import uuid
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession
from careguard.core.config import settings
from careguard.core.db import get_session
from careguard.core.paging import Page
from careguard.core.security import IdentityContext
from careguard.modules.audit.models import ActionKind
from careguard.modules.guard.dependencies import require_roles
from careguard.modules.alerts.schemas import AuditEventOut
from careguard.modules.alerts.service import AlertService

router = APIRouter()

def svc(session: AsyncSession = Depends(get_session)) -> AlertService:
    return AlertService(session)

operator = require_roles("admin")

@router.get("/audit/alerts", response_model=list[AuditEventOut])
async def list_alerts(
    unresolved_only: bool = Query(True, alias="unresolvedOnly"),
    limit: int = Query(settings.ALERT_LIST_CAP, ge=1, le=settings.ALERT_LIST_CAP),
    identity: IdentityContext = Depends(operator),
    service: AlertService = Depends(svc),
):
    return await service.list_alerts(identity.org_id, unresolved_only, limit)

@router.get("/audit/logs", response_model=Page[AuditEventOut])
async def audit_trail(
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    action_kind: ActionKind | None = Query(None, alias="actionKind"),
    flagged: bool | None = Query(None),
    actor_id: uuid.UUID | None = Query(None, alias="actorId"),
    identity: IdentityContext = Depends(operator),
    service: AlertService = Depends(svc),
):
    return await service.audit_trail(
        identity.org_id, page, limit,
        action_kind=action_kind.value if action_kind else None,
        flagged=flagged,
        actor_id=actor_id,
    )

@router.patch("/audit/alerts/{alert_id}/resolve", response_model=AuditEventOut)
async def resolve_alert(
    alert_id: uuid.UUID,
    identity: IdentityContext = Depends(operator),
    service: AlertService = Depends(svc),
):
    ev = await service.resolve(identity.org_id, alert_id, resolved_by=identity.actor_id)
    return AuditEventOut.from_event(ev)
