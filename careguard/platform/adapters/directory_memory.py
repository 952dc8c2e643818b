import uuid
from careguard.platform.ports.directory import (
    IdentityDirectoryPort, RecordDirectoryPort, DirectoryEntry, RecordOwnership,
)

class InMemoryDirectory(IdentityDirectoryPort, RecordDirectoryPort):
    """Static directory for local development and tests."""

    def __init__(self):
        self.staff: dict[uuid.UUID, DirectoryEntry] = {}
        self.records: dict[uuid.UUID, RecordOwnership] = {}

    def add_staff(self, display_name: str, role: str, department: str | None = None,
                  actor_id: uuid.UUID | None = None, active: bool = True) -> DirectoryEntry:
        entry = DirectoryEntry(actor_id=actor_id or uuid.uuid4(), display_name=display_name,
                               role=role, department=department, active=active)
        self.staff[entry.actor_id] = entry
        return entry

    def add_record(self, department: str | None, assigned_doctor_id: uuid.UUID | None,
                   record_id: uuid.UUID | None = None) -> RecordOwnership:
        rec = RecordOwnership(record_id=record_id or uuid.uuid4(), department=department,
                              assigned_doctor_id=assigned_doctor_id)
        self.records[rec.record_id] = rec
        return rec

    async def lookup(self, actor_id: uuid.UUID) -> DirectoryEntry | None:
        return self.staff.get(actor_id)

    async def ownership(self, record_id: uuid.UUID) -> RecordOwnership | None:
        return self.records.get(record_id)
