import json
import logging
from redis.asyncio import from_url as redis_from_url
from careguard.platform.ports.event_bus import EventBusPort
from careguard.core.config import settings

log = logging.getLogger("bus.redis")

class RedisEventBus(EventBusPort):
    """Appends alerts to a capped Redis stream; consumers filter on `org_id`."""

    def __init__(self):
        if not settings.REDIS_URL:
            raise RuntimeError("REDIS_URL not configured")
        self.redis = redis_from_url(settings.REDIS_URL, encoding="utf-8", decode_responses=True)
        self.stream = settings.REDIS_STREAM or "careguard.alerts"

    async def publish(self, topic: str, key: str, value: dict, headers: dict | None = None) -> None:
        fields = {
            "topic": topic,
            "key": key,
            "org_id": str(value.get("org_id") or ""),
            "value": json.dumps(value, default=str),
        }
        if headers:
            fields["headers"] = json.dumps(headers)
        msg_id = await self.redis.xadd(self.stream, fields, maxlen=settings.REDIS_STREAM_MAXLEN, approximate=True)
        log.debug("[REDIS BUS] XADD stream=%s id=%s key=%s", self.stream, msg_id, key)

    async def close(self):
        await self.redis.aclose()
