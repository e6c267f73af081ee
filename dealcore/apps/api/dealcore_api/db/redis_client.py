"""Redis client for dealcore rate limiting.

Redis is optional: without REDIS_URL the API runs with the no-op rate limiter
and readiness reports Redis as "disabled".
"""

import os
from typing import Optional
from urllib.parse import urlparse

import redis

from dealcore_api.config.env import get_redis_url


class RedisClient:
    """Process-wide Redis client, created lazily from REDIS_URL."""

    _instance: Optional[redis.Redis] = None

    @classmethod
    def is_configured(cls) -> bool:
        return cls._instance is not None or get_redis_url() is not None

    @classmethod
    def get_client(cls) -> redis.Redis:
        """Return the shared client.

        REDIS_PASSWORD is applied only when the URL carries no password.

        Raises:
            RuntimeError: REDIS_URL not set
        """
        if cls._instance is None:
            redis_url = get_redis_url()
            if not redis_url:
                raise RuntimeError("REDIS_URL not set; Redis-backed rate limiting is unavailable")

            kwargs = {
                "decode_responses": True,
                "socket_connect_timeout": 2,
                "socket_timeout": 2,
                "health_check_interval": 30,
            }
            redis_password = os.getenv("REDIS_PASSWORD")
            if not urlparse(redis_url).password and redis_password:
                kwargs["password"] = redis_password

            cls._instance = redis.from_url(redis_url, **kwargs)

        return cls._instance

    @classmethod
    def set_client(cls, client: Optional[redis.Redis]) -> None:
        """Install a client directly (tests inject fakes here)."""
        cls._instance = client

    @classmethod
    def reset(cls) -> None:
        if cls._instance is not None:
            cls._instance.close()
            cls._instance = None
