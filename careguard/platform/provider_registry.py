from careguard.core.config import settings
from careguard.core.db import SessionLocal
from careguard.platform.ports.event_bus import EventBusPort
from careguard.platform.adapters.bus_noop import NoopEventBus
from careguard.platform.adapters.bus_redis import RedisEventBus
from careguard.platform.ports.directory import IdentityDirectoryPort, RecordDirectoryPort
from careguard.platform.adapters.directory_sql import SqlDirectory
from careguard.platform.adapters.directory_memory import InMemoryDirectory

class ProviderRegistry:
    _event_bus: EventBusPort | None = None
    _directory: SqlDirectory | InMemoryDirectory | None = None

    @classmethod
    def event_bus(cls) -> EventBusPort:
        if cls._event_bus is None:
            prov = (settings.EVENT_BUS_PROVIDER or "noop").lower()
            if prov == "redis":
                cls._event_bus = RedisEventBus()
            else:
                cls._event_bus = NoopEventBus()
        return cls._event_bus

    @classmethod
    def _dir(cls):
        if cls._directory is None:
            if settings.DIRECTORY_PROVIDER == "memory":
                cls._directory = InMemoryDirectory()
            else:
                cls._directory = SqlDirectory(SessionLocal)
        return cls._directory

    @classmethod
    def identity_directory(cls) -> IdentityDirectoryPort:
        return cls._dir()

    @classmethod
    def record_directory(cls) -> RecordDirectoryPort:
        return cls._dir()

registry = ProviderRegistry()
