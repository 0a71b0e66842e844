import redis
import structlog

from virtualqueue.core.config import settings

logger = structlog.get_logger()


class RevocationStore:
    """Denylist of bearer tokens revoked before their natural expiry.

    Entries live under ``{prefix}:{token_type}:{token}`` and expire together
    with the token they block, so the keyspace never outgrows the set of
    still-valid tokens.
    """

    def __init__(self, client: redis.Redis, prefix: str = None):
        self.client = client
        self.prefix = prefix or settings.REVOCATION_KEY_PREFIX

    def _key(self, token_type: str, token: str) -> str:
        return f"{self.prefix}:{token_type}:{token}"

    def is_revoked(self, token_type: str, token: str) -> bool:
        return bool(self.client.exists(self._key(token_type, token)))

    def revoke(self, token_type: str, token: str, ttl_seconds: int) -> bool:
        """Record ``token`` as revoked; returns False when nothing had to be written."""
        ttl_seconds = int(ttl_seconds)
        if ttl_seconds <= 0:
            return False
        self.client.set(self._key(token_type, token), "1", ex=ttl_seconds)
        logger.info("token_revoked", token_type=token_type, ttl=ttl_seconds)
        return True
