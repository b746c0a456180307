from __future__ import annotations

import redis.asyncio as redis

from lawfirm_authz.configs.logging_config import get_security_logger

security_log = get_security_logger()


class RevocationList:
    """
    Redis-backed denylist of credential ids (`jti`).

    Entries expire together with the credential they revoke, so the list
    never grows past the set of still-valid revoked credentials.
    """

    def __init__(self, redis_client: redis.Redis, prefix: str = "authz"):
        self._redis = redis_client
        self._prefix = prefix

    def _key(self, credential_id: str) -> str:
        return f"{self._prefix}:revoked:{credential_id}"

    async def revoke(self, credential_id: str, ttl_seconds: int) -> None:
        await self._redis.set(self._key(credential_id), "1", ex=max(int(ttl_seconds), 1))
        security_log.info("security.credential_revoked jti=%s ttl=%s", credential_id, ttl_seconds)

    async def is_revoked(self, credential_id: str) -> bool:
        return bool(await self._redis.exists(self._key(credential_id)))
