from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncEngine, AsyncSession
from sqlalchemy.pool import NullPool
from .config import settings
from .base import Base

def make_engine(dsn: str) -> AsyncEngine:
    # aiosqlite connections are bound to the loop that opened them
    if dsn.startswith("sqlite"):
        return create_async_engine(dsn, poolclass=NullPool)
    return create_async_engine(dsn, pool_pre_ping=True)

def make_sessionmaker(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind, expire_on_commit=False, class_=AsyncSession)

engine = make_engine(settings.DATABASE_DSN)
SessionLocal = make_sessionmaker(engine)

async def get_session():
    async with SessionLocal() as session:
        yield session

async def init_models(bind: AsyncEngine | None = None):
    # In dev-only "create_all" mode, build the schema; otherwise migrations own it.
    if settings.DB_MANAGE != "create_all":
        return
    # register every mapped table before create_all
    import careguard.modules.audit.models  # noqa: F401
    import careguard.modules.directory.models  # noqa: F401
    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
