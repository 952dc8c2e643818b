import json
import logging
from careguard.platform.ports.event_bus import EventBusPort

log = logging.getLogger("bus.noop")

class NoopEventBus(EventBusPort):
    """Writes alerts to the log instead of a broker."""

    async def publish(self, topic: str, key: str, value: dict, headers: dict | None = None) -> None:
        log.info("[NOOP BUS] topic=%s key=%s org=%s reason=%r payload=%s",
                 topic, key, value.get("org_id"), value.get("flag_reason"), json.dumps(value, default=str))
