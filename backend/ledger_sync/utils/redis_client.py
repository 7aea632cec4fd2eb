"""Helper function to create Redis clients with SSL support for Upstash and other providers."""

from __future__ import annotations

import ssl
from typing import Any

from redis import Redis

DEFAULT_SOCKET_TIMEOUT = 5


def create_redis_client(url: str, **kwargs: Any) -> Redis:
    """Create a Redis client with proper SSL configuration.

    The queue store and the progress tracker share this factory so that every
    connection gets the same timeouts and TLS handling.

    Args:
        url: Redis connection URL (redis:// or rediss://)
        **kwargs: Additional arguments (decode_responses, socket_connect_timeout, etc.)

    Returns:
        Configured Redis client
    """
    # If it's Upstash but uses redis://, convert to rediss://
    if ".upstash.io" in url and url.startswith("redis://"):
        url = url.replace("redis://", "rediss://", 1)

    kwargs.setdefault("socket_timeout", DEFAULT_SOCKET_TIMEOUT)
    kwargs.setdefault("health_check_interval", 30)
    client = Redis.from_url(url, **kwargs)

    # Managed providers terminate TLS with certificates we cannot verify
    if url.startswith("rediss://") or ".upstash.io" in url:
        if hasattr(client, "connection_pool") and hasattr(
            client.connection_pool, "connection_kwargs"
        ):
            client.connection_pool.connection_kwargs["ssl_cert_reqs"] = ssl.CERT_NONE

    return client
