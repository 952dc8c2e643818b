import asyncio
import logging
import uuid
from datetime import datetime, timezone
from typing import Callable
from sqlalchemy.ext.asyncio import async_sessionmaker, AsyncSession
from careguard.core.config import settings
from careguard.core.security import ActorRole, IdentityExtractor
from careguard.modules.audit.models import AuditEvent, ActionKind
from careguard.modules.audit.recorder import AuditRecorder
from careguard.modules.anomaly.engine import AnomalyEngine
from careguard.modules.anomaly.rules import Observation, Rule
from careguard.modules.guard.scope import AccessScopeGuard
from careguard.platform.ports.directory import IdentityDirectoryPort, RecordDirectoryPort
from careguard.platform.ports.event_bus import EventBusPort

log = logging.getLogger("security.monitor")

def _now() -> datetime:
    return datetime.now(timezone.utc)

class SecurityMonitor:
    """Wires identity extraction, audit capture, anomaly screening and scope checks."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession],
                 identity_directory: IdentityDirectoryPort, record_directory: RecordDirectoryPort, *,
                 bus: EventBusPort | None = None, clock: Callable[[], datetime] | None = None,
                 rules: list[Rule] | None = None, anomaly_timeout: float | None = None):
        self.clock = clock or _now
        self.extractor = IdentityExtractor(identity_directory)
        self.recorder = AuditRecorder(session_factory)
        self.engine = AnomalyEngine(session_factory, rules, bus=bus, clock=self.clock, timeout=anomaly_timeout)
        self.guard = AccessScopeGuard(record_directory, self.recorder, bus=bus, clock=self.clock)
        self._followups: set[asyncio.Task] = set()

    async def report_failed_login(self, source_ip: str, attempted_name: str | None = None, *,
                                  endpoint: str | None = None, org_id: uuid.UUID | None = None,
                                  user_agent: str | None = None) -> list[AuditEvent]:
        """Entry point for the login handler: record a FAILED_LOGIN and screen the source IP."""
        event = AuditEvent(
            id=uuid.uuid4(),
            org_id=org_id or uuid.UUID(settings.DEFAULT_ORG_ID),
            actor_id=None,
            actor_name=attempted_name or "Unknown",
            actor_role=ActorRole.unknown.value,
            action_kind=ActionKind.FAILED_LOGIN.value,
            endpoint=endpoint or f"POST {settings.API_PREFIX}/auth/login",
            source_ip=source_ip or "Unknown",
            occurred_at=self.clock(),
            flagged=False,
            flag_reason="",
            rule_id="",
            resolved=False,
            details={"userAgent": user_agent},
        )
        obs = Observation.from_event(event)
        await self.recorder.persist(event)
        return await self.engine.evaluate(obs)

    def dispatch_failed_login(self, source_ip: str, **kwargs) -> asyncio.Task:
        task = asyncio.create_task(self.report_failed_login(source_ip, **kwargs), name=f"failed-login-{source_ip}")
        self._followups.add(task)
        task.add_done_callback(self._followups.discard)
        return task

    async def drain(self, timeout: float | None = None) -> None:
        if self._followups:
            await asyncio.wait(set(self._followups), timeout=timeout or settings.AUDIT_DRAIN_TIMEOUT_SECONDS)
        await self.recorder.drain(timeout)
        await self.engine.drain(timeout)
