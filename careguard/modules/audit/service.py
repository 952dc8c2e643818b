import logging
import uuid
from datetime import datetime, timezone
from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession
from careguard.core.config import settings
from careguard.core.security import ActorRole, IdentityContext
from careguard.modules.audit.models import AuditEvent, ActionKind
from careguard.modules.audit.repository import AuditRepository
from careguard.platform.ports.event_bus import EventBusPort

log = logging.getLogger("audit.service")

ALERT_TOPIC = "careguard.alerts"

def _now() -> datetime:
    return datetime.now(timezone.utc)

def client_ip(request: Request) -> str:
    if settings.TRUST_PROXY_HEADERS:
        fwd = request.headers.get("x-forwarded-for")
        if fwd and fwd.split(",")[0].strip():
            return fwd.split(",")[0].strip()
        real = request.headers.get("x-real-ip")
        if real:
            return real.strip()
    if request.client and request.client.host:
        return request.client.host
    return "Unknown"

def endpoint_of(request: Request) -> str:
    return f"{request.method} {request.url.path}"

def request_event(request: Request, identity: IdentityContext | None, action: ActionKind,
                  occurred_at: datetime | None = None) -> AuditEvent:
    details = {
        "userAgent": request.headers.get("user-agent"),
        "method": request.method,
    }
    if identity is not None:
        details["tokenRole"] = identity.token_role
    return AuditEvent(
        id=uuid.uuid4(),
        org_id=identity.org_id if identity else uuid.UUID(settings.DEFAULT_ORG_ID),
        actor_id=identity.actor_id if identity else None,
        actor_name=identity.display_name if identity else "Anonymous",
        actor_role=(identity.role if identity else ActorRole.unknown).value,
        action_kind=action.value,
        endpoint=endpoint_of(request),
        source_ip=client_ip(request),
        occurred_at=occurred_at or _now(),
        flagged=False,
        flag_reason="",
        rule_id="",
        resolved=False,
        details=details,
    )

class AuditService:
    def __init__(self, session: AsyncSession):
        self.session = session
        self.repo = AuditRepository(session)

    async def log(self, event: AuditEvent) -> AuditEvent:
        await self.repo.add(event)
        await self.session.commit()
        return event

async def publish_flag(bus: EventBusPort | None, event: AuditEvent) -> None:
    """Best-effort notification of a newly flagged event."""
    if bus is None:
        return
    try:
        await bus.publish(topic=ALERT_TOPIC, key=event.rule_id or event.action_kind, value={
            "id": str(event.id),
            "org_id": str(event.org_id),
            "rule_id": event.rule_id,
            "action_kind": event.action_kind,
            "flag_reason": event.flag_reason,
            "actor_id": str(event.actor_id) if event.actor_id else None,
            "actor_name": event.actor_name,
            "source_ip": event.source_ip,
            "occurred_at": event.occurred_at.isoformat(),
        })
    except Exception:
        log.warning("Alert publish failed for event %s", event.id, exc_info=True)
