import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Callable
from sqlalchemy.ext.asyncio import async_sessionmaker, AsyncSession
from careguard.core.config import settings
from careguard.core.errors import TransientStoreFailure, store_errors
from careguard.modules.audit.models import AuditEvent
from careguard.modules.audit.repository import AuditRepository
from careguard.modules.audit.service import publish_flag
from careguard.modules.anomaly.rules import Rule, Observation, default_rules
from careguard.platform.ports.event_bus import EventBusPort

log = logging.getLogger("anomaly.engine")

def _now() -> datetime:
    return datetime.now(timezone.utc)

class AnomalyEngine:
    """Runs the applicable rules for one observation.

    Rules run concurrently, each on its own session, under a shared timeout.
    Rules still running at the timeout are cancelled and count as "nothing
    flagged"; rules that finished report normally. evaluate never raises.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], rules: list[Rule] | None = None, *,
                 bus: EventBusPort | None = None, clock: Callable[[], datetime] | None = None,
                 timeout: float | None = None, cooldown_seconds: int | None = None):
        self.session_factory = session_factory
        self.rules = default_rules() if rules is None else rules
        self.bus = bus
        self.clock = clock or _now
        self.timeout = settings.ANOMALY_TIMEOUT_SECONDS if timeout is None else timeout
        cooldown = settings.ANOMALY_FLAG_COOLDOWN_SECONDS if cooldown_seconds is None else cooldown_seconds
        self.cooldown = timedelta(seconds=cooldown) if cooldown > 0 else None
        # write+publish of a flag outlives the timeout once started
        self._emitting: set[asyncio.Task] = set()

    async def evaluate(self, obs: Observation) -> list[AuditEvent]:
        rules = [r for r in self.rules if r.applies(obs)]
        if not rules:
            return []
        now = self.clock()
        tasks = [
            asyncio.create_task(self._run(rule, obs, now), name=f"rule-{rule.rule_id.value}")
            for rule in rules
        ]
        done, pending = await asyncio.wait(tasks, timeout=self.timeout)
        for task in pending:
            task.cancel()
        if pending:
            log.warning("Anomaly rules %s timed out after %.2fs for %s %s; treating them as not flagged",
                        sorted(t.get_name() for t in pending), self.timeout, obs.action.value, obs.endpoint)

        flags = []
        for task in tasks:
            if task not in done:
                continue
            if task.exception() is not None:
                log.error("Rule task %s failed", task.get_name(), exc_info=task.exception())
                continue
            if task.result() is not None:
                flags.append(task.result())
        return flags

    async def _run(self, rule: Rule, obs: Observation, now: datetime) -> AuditEvent | None:
        try:
            async with store_errors(rule.rule_id.value):
                async with self.session_factory() as session:
                    repo = AuditRepository(session)
                    if self.cooldown is not None and await repo.has_open_flag(
                        obs.org_id, rule.rule_id.value, now - self.cooldown, **rule.key(obs)
                    ):
                        log.debug("Rule %s suppressed by cool-down", rule.rule_id.value)
                        return None
                    flag = await rule.evaluate(obs, repo, now)
        except TransientStoreFailure:
            log.warning("Rule %s skipped: audit store unavailable", rule.rule_id.value, exc_info=True)
            return None
        except Exception:
            log.exception("Rule %s failed", rule.rule_id.value)
            return None
        if flag is None:
            return None

        emit = asyncio.create_task(self._emit(flag), name=f"emit-{flag.id}")
        self._emitting.add(emit)
        emit.add_done_callback(self._emitting.discard)
        return await asyncio.shield(emit)

    async def _emit(self, flag: AuditEvent) -> AuditEvent | None:
        try:
            async with store_errors(flag.rule_id):
                async with self.session_factory() as session:
                    await AuditRepository(session).add(flag)
                    await session.commit()
        except TransientStoreFailure:
            log.warning("Flag %s lost: audit store unavailable", flag.rule_id, exc_info=True)
            return None
        except Exception:
            log.exception("Unexpected error writing flag %s", flag.rule_id)
            return None

        log.warning("ANOMALY DETECTED: %s (actor=%s ip=%s endpoint=%s)",
                    flag.flag_reason, flag.actor_name, flag.source_ip, flag.endpoint)
        await publish_flag(self.bus, flag)
        return flag

    async def drain(self, timeout: float | None = None) -> None:
        if not self._emitting:
            return
        await asyncio.wait(set(self._emitting), timeout=settings.AUDIT_DRAIN_TIMEOUT_SECONDS if timeout is None else timeout)
