"""Redis infrastructure: run log storage with graceful degradation."""

import orjson
import redis.asyncio as aioredis
import structlog

from index_sync_service.config import get_settings
from index_sync_service.services.run_log import RunLog

logger = structlog.get_logger()

_redis_client: aioredis.Redis | None = None

RUN_LOG_KEY_PREFIX = "index-sync:run-log:"


async def get_redis_client() -> aioredis.Redis | None:
    """Get or create the global async Redis client."""
    global _redis_client
    if _redis_client is None:
        settings = get_settings()
        try:
            _redis_client = aioredis.from_url(
                settings.redis_url,
                decode_responses=False,
                socket_connect_timeout=2,
                socket_timeout=2,
                retry_on_timeout=True,
            )
            await _redis_client.ping()
            logger.info("Redis connection established")
        except Exception as e:
            logger.warning("Redis unavailable, run logs will not be stored", error=str(e))
            _redis_client = None
    return _redis_client


async def close_redis() -> None:
    """Close the Redis connection on shutdown."""
    global _redis_client
    if _redis_client:
        await _redis_client.close()
        _redis_client = None


class RedisRunLogStore:
    """Run log store backed by Redis. No-ops if Redis is unavailable."""

    def __init__(self, client: aioredis.Redis | None):
        self.client = client

    async def load(self, name: str) -> RunLog | None:
        if not self.client:
            return None
        try:
            data = await self.client.get(RUN_LOG_KEY_PREFIX + name)
            if data:
                return RunLog.model_validate(orjson.loads(data))
        except Exception as e:
            logger.warning("Run log load failed", name=name, error=str(e))
        return None

    async def save(self, name: str, run_log: RunLog) -> None:
        if not self.client:
            logger.error("Redis unavailable, run log not saved", name=name)
            return
        try:
            await self.client.set(RUN_LOG_KEY_PREFIX + name, orjson.dumps(run_log.to_record()))
        except Exception as e:
            logger.error("Run log save failed", name=name, error=str(e))

    async def health_check(self) -> bool:
        if not self.client:
            return False
        try:
            return await self.client.ping()
        except Exception:
            return False
