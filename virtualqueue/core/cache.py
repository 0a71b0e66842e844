import redis
import structlog
from fastapi import Request

from virtualqueue.core.config import settings

logger = structlog.get_logger()


def create_redis_client(url: str = None) -> redis.Redis:
    """Build the process-wide Redis client; connections are opened lazily by its pool."""
    client = redis.Redis.from_url(
        url or settings.REDIS_URL,
        decode_responses=True,
        socket_timeout=5.0,
        socket_connect_timeout=5.0,
        health_check_interval=30,
    )
    logger.info("redis_client_created")
    return client


def close_redis_client(client: redis.Redis) -> None:
    if client is None:
        return
    try:
        client.close()
    except redis.RedisError as exc:
        logger.warning("redis_client_close_failed", error=str(exc))


def get_redis(request: Request) -> redis.Redis:
    """FastAPI dependency returning the client created at startup."""
    return request.app.state.redis
