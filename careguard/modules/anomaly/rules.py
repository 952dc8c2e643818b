"""Behavioral rules over the audit log.

Rules keep no state between evaluations: every window is recomputed from the
store. Each evaluation yields at most one new flagged event and never touches
existing ones.
"""
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta, tzinfo
from zoneinfo import ZoneInfo
from careguard.core.config import settings
from careguard.core.security import ActorRole
from careguard.modules.audit.models import AuditEvent, ActionKind, RuleId
from careguard.modules.audit.repository import AuditRepository

@dataclass(frozen=True)
class Observation:
    """The request activity being screened.

    `event_id` is the id pre-assigned to the activity's own audit event. That
    write is detached, so window queries exclude the id and count the
    observation explicitly instead.
    """
    org_id: uuid.UUID
    action: ActionKind
    endpoint: str
    source_ip: str
    event_id: uuid.UUID | None = None
    actor_id: uuid.UUID | None = None
    actor_name: str = "Anonymous"
    actor_role: ActorRole = ActorRole.unknown
    details: dict = field(default_factory=dict)

    @classmethod
    def from_event(cls, ev: AuditEvent) -> "Observation":
        return cls(
            org_id=ev.org_id,
            action=ActionKind(ev.action_kind),
            endpoint=ev.endpoint,
            source_ip=ev.source_ip,
            event_id=ev.id,
            actor_id=ev.actor_id,
            actor_name=ev.actor_name,
            actor_role=ActorRole.parse(ev.actor_role),
        )

class Rule(ABC):
    rule_id: RuleId
    reason: str

    @abstractmethod
    def applies(self, obs: Observation) -> bool: ...

    def key(self, obs: Observation) -> dict:
        """Keyword filters identifying who this rule is about (used for cool-down)."""
        return {"actor_id": obs.actor_id}

    @abstractmethod
    async def evaluate(self, obs: Observation, repo: AuditRepository, now: datetime) -> AuditEvent | None: ...

    def flag(self, obs: Observation, now: datetime, *, action: ActionKind, actor_name: str,
             source_ip: str, actor_id: uuid.UUID | None, actor_role: str, details: dict) -> AuditEvent:
        return AuditEvent(
            id=uuid.uuid4(),
            org_id=obs.org_id,
            actor_id=actor_id,
            actor_name=actor_name,
            actor_role=actor_role,
            action_kind=action.value,
            endpoint=obs.endpoint,
            source_ip=source_ip,
            occurred_at=now,
            flagged=True,
            flag_reason=self.reason,
            rule_id=self.rule_id.value,
            resolved=False,
            details={"rule": self.rule_id.value, **details},
        )

class BruteForceLoginRule(Rule):
    rule_id = RuleId.brute_force_login
    reason = "Brute force login attempt detected"

    def __init__(self, window_minutes: int | None = None, threshold: int | None = None):
        self.window = timedelta(minutes=settings.BRUTE_FORCE_WINDOW_MINUTES if window_minutes is None else window_minutes)
        self.threshold = settings.BRUTE_FORCE_THRESHOLD if threshold is None else threshold

    def applies(self, obs: Observation) -> bool:
        return obs.action == ActionKind.FAILED_LOGIN

    def key(self, obs: Observation) -> dict:
        return {"source_ip": obs.source_ip}

    async def evaluate(self, obs, repo, now):
        attempts = 1 + await repo.count_since(
            obs.org_id, ActionKind.FAILED_LOGIN.value, now - self.window,
            source_ip=obs.source_ip, exclude_id=obs.event_id,
        )
        if attempts < self.threshold:
            return None
        # no valid identity on failed logins; name the last attempted one
        last = await repo.latest_activity(obs.org_id, ActionKind.FAILED_LOGIN.value, source_ip=obs.source_ip)
        return self.flag(
            obs, now,
            action=ActionKind.FAILED_LOGIN,
            actor_name=(last.actor_name if last else None) or obs.actor_name or "Unknown",
            source_ip=obs.source_ip,
            actor_id=None,
            actor_role=ActorRole.unknown.value,
            details={"failedAttempts": attempts, "windowMinutes": int(self.window.total_seconds() // 60)},
        )

class ExcessiveRecordAccessRule(Rule):
    rule_id = RuleId.excessive_record_access
    reason = "Unusual patient record access frequency detected"

    def __init__(self, window_minutes: int | None = None, threshold: int | None = None):
        self.window = timedelta(minutes=settings.RECORD_ACCESS_WINDOW_MINUTES if window_minutes is None else window_minutes)
        self.threshold = settings.RECORD_ACCESS_THRESHOLD if threshold is None else threshold

    def applies(self, obs: Observation) -> bool:
        return (obs.action == ActionKind.VIEW_RECORD
                and obs.actor_role == ActorRole.doctor
                and obs.actor_id is not None)

    async def evaluate(self, obs, repo, now):
        endpoints = await repo.distinct_endpoints_since(
            obs.org_id, ActionKind.VIEW_RECORD.value, now - self.window,
            actor_id=obs.actor_id, exclude_id=obs.event_id,
        )
        endpoints.add(obs.endpoint)
        if len(endpoints) <= self.threshold:
            return None
        last = await repo.latest_activity(obs.org_id, ActionKind.VIEW_RECORD.value, actor_id=obs.actor_id)
        return self.flag(
            obs, now,
            action=ActionKind.VIEW_RECORD,
            actor_name=last.actor_name if last else obs.actor_name,
            source_ip=last.source_ip if last else obs.source_ip,
            actor_id=obs.actor_id,
            actor_role=obs.actor_role.value,
            details={"distinctRecords": len(endpoints), "windowMinutes": int(self.window.total_seconds() // 60)},
        )

SIGNIFICANT_ACTIONS = frozenset({
    ActionKind.ADD_RECORD, ActionKind.ROLE_CHANGE, ActionKind.DELETE_USER, ActionKind.VIEW_RECORD,
})

class OffHoursAccessRule(Rule):
    rule_id = RuleId.off_hours_access
    reason = "System accessed during unusual hours"

    def __init__(self, start_hour: int | None = None, end_hour: int | None = None, tz: tzinfo | None = None):
        self.start = settings.OFF_HOURS_START if start_hour is None else start_hour
        self.end = settings.OFF_HOURS_END if end_hour is None else end_hour
        if tz is None and settings.MONITOR_TIMEZONE:
            tz = ZoneInfo(settings.MONITOR_TIMEZONE)
        self.tz = tz

    def applies(self, obs: Observation) -> bool:
        return obs.actor_id is not None and obs.action in SIGNIFICANT_ACTIONS

    def is_off_hours(self, when: datetime) -> bool:
        # astimezone(None) converts to server local time
        hour = when.astimezone(self.tz).hour
        if self.start > self.end:
            return hour >= self.start or hour < self.end
        return self.start <= hour < self.end

    async def evaluate(self, obs, repo, now):
        if not self.is_off_hours(now):
            return None
        return self.flag(
            obs, now,
            action=obs.action,
            actor_name=obs.actor_name,
            source_ip=obs.source_ip,
            actor_id=obs.actor_id,
            actor_role=obs.actor_role.value,
            details={"localHour": now.astimezone(self.tz).hour},
        )

class RapidRoleChangeRule(Rule):
    rule_id = RuleId.rapid_role_change
    reason = "Suspicious rapid role modification detected"

    def __init__(self, window_minutes: int | None = None, threshold: int | None = None):
        self.window = timedelta(minutes=settings.ROLE_CHANGE_WINDOW_MINUTES if window_minutes is None else window_minutes)
        self.threshold = settings.ROLE_CHANGE_THRESHOLD if threshold is None else threshold

    def applies(self, obs: Observation) -> bool:
        return (obs.action == ActionKind.ROLE_CHANGE
                and obs.actor_role == ActorRole.admin
                and obs.actor_id is not None)

    async def evaluate(self, obs, repo, now):
        changes = 1 + await repo.count_since(
            obs.org_id, ActionKind.ROLE_CHANGE.value, now - self.window,
            actor_id=obs.actor_id, exclude_id=obs.event_id,
        )
        if changes <= self.threshold:
            return None
        last = await repo.latest_activity(obs.org_id, actor_id=obs.actor_id)
        return self.flag(
            obs, now,
            action=ActionKind.ROLE_CHANGE,
            actor_name=last.actor_name if last else obs.actor_name,
            source_ip=last.source_ip if last else obs.source_ip,
            actor_id=obs.actor_id,
            actor_role=obs.actor_role.value,
            details={"roleChanges": changes, "windowMinutes": int(self.window.total_seconds() // 60)},
        )

def default_rules() -> list[Rule]:
    return [
        BruteForceLoginRule(),
        ExcessiveRecordAccessRule(),
        OffHoursAccessRule(),
        RapidRoleChangeRule(),
    ]
