import uuid
from typing import Literal
from fastapi import Depends, Request
from careguard.core.errors import NotFound
from careguard.core.security import IdentityContext, get_identity
from careguard.modules.audit.service import client_ip, endpoint_of
from careguard.modules.guard.scope import AccessScopeGuard
from careguard.platform.ports.directory import RecordOwnership

def _guard(request: Request) -> AccessScopeGuard:
    return request.app.state.monitor.guard

def require_roles(*roles: str):
    async def dep(request: Request, identity: IdentityContext = Depends(get_identity)) -> IdentityContext:
        _guard(request).check_role(identity, roles)
        return identity
    return dep

def record_scope(param: str = "record_id"):
    async def dep(request: Request, identity: IdentityContext = Depends(get_identity)) -> RecordOwnership:
        try:
            record_id = uuid.UUID(str(request.path_params.get(param)))
        except ValueError:
            raise NotFound("Record not found.")
        return await _guard(request).check_record(
            identity, record_id, endpoint=endpoint_of(request), source_ip=client_ip(request),
        )
    return dep

def forbid_self(param: str = "user_id", action: Literal["role_change", "delete"] = "role_change"):
    async def dep(request: Request, identity: IdentityContext = Depends(get_identity)) -> IdentityContext:
        try:
            target = uuid.UUID(str(request.path_params.get(param)))
        except ValueError:
            # not an actor id, so not the caller; the handler decides what it is
            return identity
        _guard(request).check_not_self(identity, target, action)
        return identity
    return dep
