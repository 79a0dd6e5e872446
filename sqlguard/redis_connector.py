from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Optional
from urllib.parse import urlparse

import redis
from dotenv import load_dotenv

from sqlguard.config.defaults import logger

load_dotenv()


@dataclass(frozen=True)
class RedisOptions:
    """
    Reads Redis connection options from environment variables.

    Supported:
      - SQLGUARD_REDIS_URL (e.g. redis://:pass@host:6379/0 or rediss://:pass@host:6380/1)
      - or split vars: SQLGUARD_REDIS_HOST, SQLGUARD_REDIS_PORT, SQLGUARD_REDIS_DB, SQLGUARD_REDIS_PASSWORD

    Optional:
      - SQLGUARD_REDIS_KEY_PREFIX (default: "sqlguard")
      - SQLGUARD_REDIS_SOCKET_TIMEOUT seconds (default: 5)
    """
    host: str = field(init=False)
    port: int = field(init=False)
    db: int = field(init=False)
    password: Optional[str] = field(init=False)
    use_ssl: bool = field(init=False)
    key_prefix: str = field(init=False)
    socket_timeout: float = field(init=False)

    def __post_init__(self):
        url = os.getenv("SQLGUARD_REDIS_URL")
        if url:
            u = urlparse(url)
            host = u.hostname or "localhost"
            port = u.port or 6379
            db = int((u.path or "/0").lstrip("/") or 0)
            password = u.password
            use_ssl = u.scheme.lower() == "rediss"
        else:
            host = os.getenv("SQLGUARD_REDIS_HOST", "localhost")
            port = int(os.getenv("SQLGUARD_REDIS_PORT", "6379"))
            db = int(os.getenv("SQLGUARD_REDIS_DB", "0"))
            password = os.getenv("SQLGUARD_REDIS_PASSWORD")
            use_ssl = False

        try:
            socket_timeout = float(os.getenv("SQLGUARD_REDIS_SOCKET_TIMEOUT", "5"))
        except ValueError:
            logger.warning("[redis-options] Invalid SQLGUARD_REDIS_SOCKET_TIMEOUT; using 5s")
            socket_timeout = 5.0

        object.__setattr__(self, "host", host)
        object.__setattr__(self, "port", port)
        object.__setattr__(self, "db", db)
        object.__setattr__(self, "password", password)
        object.__setattr__(self, "use_ssl", use_ssl)
        object.__setattr__(self, "key_prefix", os.getenv("SQLGUARD_REDIS_KEY_PREFIX", "sqlguard"))
        object.__setattr__(self, "socket_timeout", socket_timeout)


def create_redis_client(options: Optional[RedisOptions] = None) -> redis.Redis:
    opts = options or RedisOptions()
    logger.info(
        f"[redis-connector] Using Redis host={opts.host}, port={opts.port}, db={opts.db}"
    )
    # The store keeps JSON documents; responses are always decoded to str.
    return redis.Redis(
        host=opts.host,
        port=opts.port,
        db=opts.db,
        password=opts.password,
        ssl=opts.use_ssl,
        socket_timeout=opts.socket_timeout,
        decode_responses=True,
    )


class RedisConnector:
    """Creates and holds a Redis client connection based on RedisOptions."""

    def __init__(self, options: Optional[RedisOptions] = None):
        self.options = options or RedisOptions()
        self.r = create_redis_client(self.options)
