from contextlib import asynccontextmanager
from sqlalchemy.exc import SQLAlchemyError

class CareGuardError(Exception):
    status_code = 500
    default_message = "An internal server error occurred."

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)

class Unauthenticated(CareGuardError):
    status_code = 401
    default_message = "No token provided. Authorization denied."

class TokenExpired(Unauthenticated):
    default_message = "Token has expired. Please login again."

class Forbidden(CareGuardError):
    status_code = 403
    default_message = "Access denied."

class NotFound(CareGuardError):
    status_code = 404
    default_message = "Not found."

class TransientStoreFailure(CareGuardError):
    """Persistence error on the audit path. Logged, never surfaced to callers."""
    default_message = "Audit store unavailable."

@asynccontextmanager
async def store_errors(what: str):
    try:
        yield
    except SQLAlchemyError as e:
        raise TransientStoreFailure(f"{what}: {e}") from e
