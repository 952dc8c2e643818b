import enum
import logging
import uuid
from datetime import datetime, timedelta, timezone
from fastapi import Request
from jose import jwt, JWTError, ExpiredSignatureError
from pydantic import BaseModel, ConfigDict
from careguard.core.config import settings
from careguard.core.errors import Unauthenticated, TokenExpired, Forbidden
from careguard.platform.ports.directory import IdentityDirectoryPort

log = logging.getLogger("security.identity")

class ActorRole(str, enum.Enum):
    doctor = "doctor"
    nurse = "nurse"
    admin = "admin"
    unknown = "unknown"

    @classmethod
    def parse(cls, value: str | None) -> "ActorRole":
        try:
            return cls(value)
        except ValueError:
            return cls.unknown

class IdentityContext(BaseModel):
    model_config = ConfigDict(frozen=True)

    actor_id: uuid.UUID
    org_id: uuid.UUID
    role: ActorRole           # from the directory, authoritative
    token_role: str           # as embedded in the credential, display only
    department: str | None
    display_name: str

def issue_token(actor_id: uuid.UUID, *, role: str, name: str, department: str | None = None,
                org_id: uuid.UUID | None = None, expires_in: timedelta | None = None) -> str:
    now = datetime.now(timezone.utc)
    claims = {
        "sub": str(actor_id),
        "org_id": str(org_id or settings.DEFAULT_ORG_ID),
        "role": role,
        "name": name,
        "department": department,
        "iat": now,
        "exp": now + (expires_in if expires_in is not None else timedelta(minutes=settings.ACCESS_TOKEN_TTL_MINUTES)),
    }
    if settings.REQUIRED_AUDIENCE:
        claims["aud"] = settings.REQUIRED_AUDIENCE
    return jwt.encode(claims, settings.JWT_SECRET, algorithm=settings.JWT_ALG)

def decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALG], audience=settings.REQUIRED_AUDIENCE)
    except ExpiredSignatureError:
        raise TokenExpired()
    except JWTError:
        raise Unauthenticated("Invalid token. Authorization denied.")

class IdentityExtractor:
    def __init__(self, directory: IdentityDirectoryPort):
        self.directory = directory

    async def extract(self, authorization: str | None) -> IdentityContext:
        if not authorization:
            raise Unauthenticated()
        scheme, _, token = authorization.partition(" ")
        if scheme.lower() != "bearer" or not token.strip():
            raise Unauthenticated("Invalid token format.")
        data = decode_token(token.strip())
        try:
            actor_id = uuid.UUID(str(data.get("sub")))
            org_id = uuid.UUID(str(data.get("org_id") or settings.DEFAULT_ORG_ID))
        except ValueError:
            raise Unauthenticated("Invalid token format.")

        # role may have changed since issuance; the directory wins
        try:
            entry = await self.directory.lookup(actor_id)
        except Exception:
            log.exception("Directory lookup failed for actor %s", actor_id)
            raise Forbidden("Unable to verify access rights.")
        if entry is None or not entry.active:
            raise Unauthenticated("User not found.")

        return IdentityContext(
            actor_id=actor_id,
            org_id=org_id,
            role=ActorRole.parse(entry.role),
            token_role=str(data.get("role") or ActorRole.unknown.value),
            department=entry.department,
            display_name=entry.display_name or str(data.get("name") or "Unknown"),
        )

async def resolve_identity(request: Request) -> IdentityContext | None:
    """Extract once per request; the outcome (identity or error) is kept on request.state."""
    extractor: IdentityExtractor = request.app.state.monitor.extractor
    try:
        request.state.identity = await extractor.extract(request.headers.get("authorization"))
        request.state.auth_error = None
    except (Unauthenticated, Forbidden) as e:
        request.state.identity = None
        request.state.auth_error = e
    return request.state.identity

async def get_identity(request: Request) -> IdentityContext:
    if not hasattr(request.state, "identity"):
        await resolve_identity(request)
    if request.state.identity is None:
        raise request.state.auth_error or Unauthenticated()
    return request.state.identity
