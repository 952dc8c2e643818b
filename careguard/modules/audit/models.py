import enum
import uuid
from datetime import datetime, timezone
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String, TIMESTAMP, JSON, Index
from careguard.core.base import Base, TimestampedTenantMixin
from careguard.core.security import ActorRole

class ActionKind(str, enum.Enum):
    LOGIN = "LOGIN"
    FAILED_LOGIN = "FAILED_LOGIN"
    LOGOUT = "LOGOUT"
    REGISTER = "REGISTER"
    VIEW_PROFILE = "VIEW_PROFILE"
    VIEW_RECORD = "VIEW_RECORD"
    ADD_RECORD = "ADD_RECORD"
    UPDATE_RECORD = "UPDATE_RECORD"
    DELETE_RECORD = "DELETE_RECORD"
    VIEW_PATIENTS = "VIEW_PATIENTS"
    VIEW_APPOINTMENTS = "VIEW_APPOINTMENTS"
    VIEW_MEDICATIONS = "VIEW_MEDICATIONS"
    ADD_MEDICATION = "ADD_MEDICATION"
    ADMINISTER_MEDICATION = "ADMINISTER_MEDICATION"
    VIEW_USERS = "VIEW_USERS"
    ROLE_CHANGE = "ROLE_CHANGE"
    DELETE_USER = "DELETE_USER"
    VIEW_AUDIT = "VIEW_AUDIT"
    RESOLVE_ALERT = "RESOLVE_ALERT"
    UNAUTHORIZED_ACCESS = "UNAUTHORIZED_ACCESS"
    CHAT_AI = "CHAT_AI"
    OTHER = "OTHER"

class RuleId(str, enum.Enum):
    brute_force_login = "brute_force_login"
    excessive_record_access = "excessive_record_access"
    off_hours_access = "off_hours_access"
    rapid_role_change = "rapid_role_change"
    cross_department_access = "cross_department_access"

class AuditEvent(Base, TimestampedTenantMixin):
    __table_args__ = (
        Index("ix_auditevent_ip_action_time", "source_ip", "action_kind", "occurred_at"),
        Index("ix_auditevent_actor_action_time", "actor_id", "action_kind", "occurred_at"),
        Index("ix_auditevent_flagged_resolved", "flagged", "resolved"),
    )

    # who
    actor_id: Mapped[uuid.UUID | None] = mapped_column(nullable=True)
    actor_name: Mapped[str] = mapped_column(String(120), default="Anonymous")
    actor_role: Mapped[str] = mapped_column(String(16), default=ActorRole.unknown.value)
    # what / where
    action_kind: Mapped[str] = mapped_column(String(32))
    endpoint: Mapped[str] = mapped_column(String(255))
    source_ip: Mapped[str] = mapped_column(String(64), default="Unknown")
    occurred_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), default=lambda: datetime.now(timezone.utc), index=True
    )
    # review state
    flagged: Mapped[bool] = mapped_column(default=False)
    flag_reason: Mapped[str] = mapped_column(String(255), default="")
    rule_id: Mapped[str] = mapped_column(String(48), default="")
    resolved: Mapped[bool] = mapped_column(default=False)
    # "metadata" is reserved on declarative classes
    details: Mapped[dict] = mapped_column("metadata", JSON, default=dict)
