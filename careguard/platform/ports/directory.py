import uuid
from typing import Protocol, runtime_checkable
from pydantic import BaseModel

class DirectoryEntry(BaseModel):
    actor_id: uuid.UUID
    display_name: str
    role: str
    department: str | None = None
    active: bool = True

class RecordOwnership(BaseModel):
    record_id: uuid.UUID
    department: str | None
    assigned_doctor_id: uuid.UUID | None

@runtime_checkable
class IdentityDirectoryPort(Protocol):
    async def lookup(self, actor_id: uuid.UUID) -> DirectoryEntry | None: ...

@runtime_checkable
class RecordDirectoryPort(Protocol):
    async def ownership(self, record_id: uuid.UUID) -> RecordOwnership | None: ...
