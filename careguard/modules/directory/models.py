"""Read-side views of tables owned by the user store and the records service.

careguard never writes to these; it only resolves roles, departments and
record ownership for authorization decisions.
"""
import uuid
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String
from careguard.core.base import Base, TimestampedTenantMixin

class StaffMember(Base, TimestampedTenantMixin):
    display_name: Mapped[str] = mapped_column(String(120))
    role: Mapped[str] = mapped_column(String(16))  # doctor | nurse | admin
    department: Mapped[str | None] = mapped_column(String(64), nullable=True)  # specialization for doctors
    active: Mapped[bool] = mapped_column(default=True)

class PatientRecord(Base, TimestampedTenantMixin):
    patient_name: Mapped[str] = mapped_column(String(120))
    department: Mapped[str | None] = mapped_column(String(64), nullable=True)
    assigned_doctor_id: Mapped[uuid.UUID | None] = mapped_column(nullable=True, index=True)
    status: Mapped[str] = mapped_column(String(16), default="active")  # active | discharged
