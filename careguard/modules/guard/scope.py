import logging
import uuid
from datetime import datetime, timezone
from typing import Callable, Iterable, Literal
from careguard.core.errors import Forbidden, NotFound
from careguard.core.security import ActorRole, IdentityContext
from careguard.modules.audit.models import AuditEvent, ActionKind, RuleId
from careguard.modules.audit.recorder import AuditRecorder
from careguard.modules.audit.service import publish_flag
from careguard.platform.ports.directory import RecordDirectoryPort, RecordOwnership
from careguard.platform.ports.event_bus import EventBusPort

log = logging.getLogger("access.guard")

SELF_ACTIONS = {
    "role_change": "You cannot change your own role",
    "delete": "You cannot delete your own account",
}

def _now() -> datetime:
    return datetime.now(timezone.utc)

class AccessScopeGuard:
    """Authorization checks. Fails closed: anything it cannot verify is denied."""

    def __init__(self, records: RecordDirectoryPort, recorder: AuditRecorder, *,
                 bus: EventBusPort | None = None, clock: Callable[[], datetime] | None = None):
        self.records = records
        self.recorder = recorder
        self.bus = bus
        self.clock = clock or _now

    def check_role(self, identity: IdentityContext, allowed: Iterable[str]) -> None:
        allowed = [ActorRole(r).value for r in allowed]
        if identity.role.value not in allowed:
            raise Forbidden(f"Access denied. This resource requires one of the following roles: {', '.join(allowed)}")

    def check_not_self(self, identity: IdentityContext, target_id: uuid.UUID,
                       action: Literal["role_change", "delete"]) -> None:
        if target_id == identity.actor_id:
            raise Forbidden(SELF_ACTIONS[action])

    async def check_record(self, identity: IdentityContext, record_id: uuid.UUID, *,
                           endpoint: str, source_ip: str) -> RecordOwnership:
        if identity.role != ActorRole.doctor:
            raise Forbidden("Access denied. Record access is limited to the assigned doctor.")
        try:
            ownership = await self.records.ownership(record_id)
        except Exception:
            log.exception("Record ownership lookup failed for %s", record_id)
            raise Forbidden("Unable to verify record access.")
        if ownership is None:
            raise NotFound("Record not found.")

        if ownership.assigned_doctor_id == identity.actor_id and ownership.department == identity.department:
            return ownership

        event = self._violation(identity, ownership, endpoint=endpoint, source_ip=source_ip)
        log.warning("UNAUTHORIZED ACCESS: %s by %s (%s)", event.flag_reason, identity.display_name, identity.actor_id)
        if await self.recorder.persist(event):
            await publish_flag(self.bus, event)
        raise Forbidden("Access denied. This record is outside your department or assignment.")

    def _violation(self, identity: IdentityContext, ownership: RecordOwnership, *,
                   endpoint: str, source_ip: str) -> AuditEvent:
        attempted = ownership.department or "unassigned"
        actual = identity.department or "unassigned"
        return AuditEvent(
            id=uuid.uuid4(),
            org_id=identity.org_id,
            actor_id=identity.actor_id,
            actor_name=identity.display_name,
            actor_role=identity.role.value,
            action_kind=ActionKind.UNAUTHORIZED_ACCESS.value,
            endpoint=endpoint,
            source_ip=source_ip,
            occurred_at=self.clock(),
            flagged=True,
            flag_reason=(f"Cross-department record access attempt: attempted department {attempted}, "
                         f"actual department {actual}, record {ownership.record_id}"),
            rule_id=RuleId.cross_department_access.value,
            resolved=False,
            details={
                "rule": RuleId.cross_department_access.value,
                "recordId": str(ownership.record_id),
                "attemptedDepartment": ownership.department,
                "actualDepartment": identity.department,
                "assignedDoctorId": str(ownership.assigned_doctor_id) if ownership.assigned_doctor_id else None,
            },
        )
