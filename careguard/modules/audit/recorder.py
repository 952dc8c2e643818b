import asyncio
import logging
from sqlalchemy.ext.asyncio import async_sessionmaker, AsyncSession
from careguard.core.config import settings
from careguard.core.errors import TransientStoreFailure, store_errors
from careguard.modules.audit.models import AuditEvent
from careguard.modules.audit.service import AuditService

log = logging.getLogger("audit.recorder")

class AuditRecorder:
    """Persists audit events. `record` never blocks the caller; `persist` is awaited.

    Neither path raises: store failures end up in the local log and the event is lost.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession],
                 drain_timeout: float | None = None):
        self.session_factory = session_factory
        self.drain_timeout = settings.AUDIT_DRAIN_TIMEOUT_SECONDS if drain_timeout is None else drain_timeout
        # strong refs so detached writes are not garbage collected mid-flight
        self._pending: set[asyncio.Task] = set()

    def record(self, event: AuditEvent) -> asyncio.Task:
        task = asyncio.create_task(self.persist(event), name=f"audit-write-{event.id}")
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def persist(self, event: AuditEvent) -> bool:
        try:
            async with store_errors("audit write"):
                async with self.session_factory() as session:
                    await AuditService(session).log(event)
        except TransientStoreFailure:
            log.warning("Audit event lost: %s %s (%s)", event.action_kind, event.endpoint, event.id, exc_info=True)
            return False
        except Exception:
            log.exception("Unexpected error writing audit event %s", event.id)
            return False
        return True

    @property
    def in_flight(self) -> int:
        return len(self._pending)

    async def drain(self, timeout: float | None = None) -> None:
        if not self._pending:
            return
        _, pending = await asyncio.wait(set(self._pending), timeout=self.drain_timeout if timeout is None else timeout)
        if pending:
            log.warning("%d audit writes still in flight after drain timeout", len(pending))
