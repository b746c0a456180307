import redis.asyncio as redis

from lawfirm_authz.configs.settings import get_settings
from lawfirm_authz.configs.logging_config import get_logger

log = get_logger(__name__)


class RedisClient:
    """
    Shared Redis connection for admission counters and the revocation list.
    """

    client: redis.Redis = None

    async def connect(self) -> None:
        settings = get_settings()
        try:
            log.info("redis.connect prefix=%s", settings.redis_key_prefix)
            self.client = redis.from_url(settings.redis_url, decode_responses=True)
            await self.client.ping()
            log.info("redis.connected")
        except Exception as e:
            log.error("redis.connect_failed error=%s", e)
            raise

    async def close(self) -> None:
        if self.client:
            await self.client.aclose()
            self.client = None


redis_client = RedisClient()
