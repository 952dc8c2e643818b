import enum
import uuid
from datetime import datetime
from pydantic import Field
from careguard.core.paging import CamelModel
from careguard.modules.audit.models import AuditEvent

class Severity(str, enum.Enum):
    high = "high"
    medium = "medium"

HIGH_SEVERITY_MARKERS = ("brute force", "rapid")

def derive_severity(flag_reason: str | None) -> Severity:
    reason = (flag_reason or "").lower()
    if any(marker in reason for marker in HIGH_SEVERITY_MARKERS):
        return Severity.high
    return Severity.medium

class AuditEventOut(CamelModel):
    id: uuid.UUID
    actor_id: uuid.UUID | None
    actor_name: str
    actor_role: str
    action_kind: str
    endpoint: str
    source_ip: str
    timestamp: datetime
    flagged: bool
    flag_reason: str
    rule_id: str
    resolved: bool
    severity: Severity | None = None  # flagged events only, derived at read time
    metadata: dict = Field(default_factory=dict)

    @classmethod
    def from_event(cls, ev: AuditEvent) -> "AuditEventOut":
        return cls(
            id=ev.id,
            actor_id=ev.actor_id,
            actor_name=ev.actor_name,
            actor_role=ev.actor_role,
            action_kind=ev.action_kind,
            endpoint=ev.endpoint,
            source_ip=ev.source_ip,
            timestamp=ev.occurred_at,
            flagged=ev.flagged,
            flag_reason=ev.flag_reason or "",
            rule_id=ev.rule_id or "",
            resolved=ev.resolved,
            severity=derive_severity(ev.flag_reason) if ev.flagged else None,
            metadata=ev.details or {},
        )
