import uuid
from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker, AsyncSession
from careguard.platform.ports.directory import (
    IdentityDirectoryPort, RecordDirectoryPort, DirectoryEntry, RecordOwnership,
)
from careguard.modules.directory.models import StaffMember, PatientRecord

class SqlDirectory(IdentityDirectoryPort, RecordDirectoryPort):
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def lookup(self, actor_id: uuid.UUID) -> DirectoryEntry | None:
        async with self.session_factory() as s:
            row = (await s.execute(select(StaffMember).where(StaffMember.id == actor_id))).scalar_one_or_none()
        if row is None:
            return None
        return DirectoryEntry(
            actor_id=row.id, display_name=row.display_name, role=row.role,
            department=row.department, active=row.active,
        )

    async def ownership(self, record_id: uuid.UUID) -> RecordOwnership | None:
        async with self.session_factory() as s:
            row = (await s.execute(select(PatientRecord).where(PatientRecord.id == record_id))).scalar_one_or_none()
        if row is None:
            return None
        return RecordOwnership(record_id=row.id, department=row.department, assigned_doctor_id=row.assigned_doctor_id)
