from typing import Protocol, runtime_checkable

@runtime_checkable
class EventBusPort(Protocol):
    """Outbound channel for newly flagged audit events. Delivery is best-effort."""

    async def publish(self, topic: str, key: str, value: dict, headers: dict | None = None) -> None: ...
