"""
Shared Valkey connection for the dataset cache and the reservation lock.

One pool per process. Reads, writes and lock commands all go through
``ValkeyClient.client`` after ``ensure_connection()`` has confirmed the
server still answers.
"""

import asyncio
import logging
import time
from typing import Optional, Any, Dict

import valkey
from valkey.connection import ConnectionPool
from valkey.exceptions import ConnectionError, TimeoutError

from .config import ValkeyConfig, ValkeyConnectionError

logger = logging.getLogger(__name__)

# Backoff between connection attempts, in seconds
BACKOFF_BASE = 1.0
BACKOFF_CAP = 30.0


class ValkeyClient:
    """
    Pooled connection to the Valkey server backing the booking cache.

    ``valkey.Valkey`` is blocking; the coroutines here exist so the cache
    manager can await connection upkeep the same way it awaits everything
    else.
    """

    def __init__(self, config: Optional[ValkeyConfig] = None, max_connection_attempts: int = 5):
        self.config = config or ValkeyConfig.from_env()
        self.max_connection_attempts = max_connection_attempts
        self._pool: Optional[ConnectionPool] = None
        self._valkey: Optional[valkey.Valkey] = None
        self._healthy = False
        self._checked_at = 0.0
        self._attempts = 0

        logger.info(f"Valkey client for booking cache: {self.config}")

    def _open_pool(self) -> None:
        self._pool = ConnectionPool(**self.config.to_connection_pool_kwargs())
        self._valkey = valkey.Valkey(connection_pool=self._pool)

    def _ping(self) -> None:
        if self._valkey is None:
            raise ValkeyConnectionError("No Valkey pool open")
        try:
            answered = self._valkey.ping()
        except (ConnectionError, TimeoutError, OSError) as e:
            raise ValkeyConnectionError(f"Ping failed: {e}") from e
        if not answered:
            raise ValkeyConnectionError("Server did not answer PING")

    async def connect(self) -> None:
        """
        Open the pool and ping the server, backing off between failures.

        Raises:
            ValkeyConnectionError: After ``max_connection_attempts`` failures
        """
        if self.is_connected:
            return

        self._attempts = 0
        while True:
            self._attempts += 1
            try:
                self._open_pool()
                self._ping()
            except (ConnectionError, TimeoutError, OSError, ValkeyConnectionError) as e:
                logger.warning(f"Valkey unreachable (attempt {self._attempts}/{self.max_connection_attempts}): {e}")
                if self._attempts >= self.max_connection_attempts:
                    raise ValkeyConnectionError(
                        f"Gave up on Valkey at {self.config.host}:{self.config.port} "
                        f"after {self._attempts} attempts: {e}"
                    ) from e
                await asyncio.sleep(min(BACKOFF_BASE * 2 ** (self._attempts - 1), BACKOFF_CAP))
                continue

            self._healthy = True
            self._checked_at = time.time()
            logger.info(f"Booking cache connected to {self.config.host}:{self.config.port}")
            return

    async def disconnect(self) -> None:
        """Drop the pool; the next ``connect()`` opens a fresh one."""
        pool, self._pool = self._pool, None
        self._valkey = None
        self._healthy = False
        if pool is None:
            return
        try:
            pool.disconnect()
        except (ConnectionError, OSError) as e:
            logger.warning(f"Error closing Valkey pool: {e}")
        else:
            logger.info("Booking cache disconnected")

    async def health_check(self, force: bool = False) -> bool:
        """
        Ping at most once per ``health_check_interval`` unless forced.

        Returns:
            bool: Whether the connection is usable
        """
        now = time.time()
        if not force and now - self._checked_at < self.config.health_check_interval:
            return self._healthy
        self._checked_at = now

        if self._valkey is None:
            self._healthy = False
            return False

        try:
            self._ping()
        except ValkeyConnectionError as e:
            logger.warning(f"Valkey health check failed: {e}")
            self._healthy = False
        else:
            self._healthy = True
        return self._healthy

    async def ensure_connection(self) -> None:
        """Reconnect if the last health check found the server gone."""
        if await self.health_check():
            return
        logger.info("Reconnecting booking cache")
        self._healthy = False
        await self.connect()

    @property
    def is_connected(self) -> bool:
        return self._healthy and self._valkey is not None

    @property
    def client(self) -> valkey.Valkey:
        """The raw ``valkey.Valkey`` handle; raises when not connected."""
        if not self.is_connected:
            raise ValkeyConnectionError("Valkey client used before connect()")
        return self._valkey

    async def get_connection_info(self) -> Dict[str, Any]:
        info: Dict[str, Any] = {
            "is_connected": self.is_connected,
            "config": str(self.config),
            "connection_attempts": self._attempts,
        }
        if not self.is_connected:
            return info

        try:
            server = self._valkey.info()
        except (ConnectionError, TimeoutError) as e:
            info["server_info_error"] = str(e)
            return info

        info["server_version"] = server.get("valkey_version") or server.get("redis_version", "unknown")
        info["used_memory"] = server.get("used_memory_human", "unknown")
        return info

    async def __aenter__(self):
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.disconnect()


_shared: Optional[ValkeyClient] = None


async def get_client(config: Optional[ValkeyConfig] = None) -> ValkeyClient:
    """Return the process-wide client, connecting it on first use."""
    global _shared
    if _shared is None:
        client = ValkeyClient(config)
        await client.connect()
        _shared = client
    return _shared


async def close_global_client() -> None:
    global _shared
    if _shared is not None:
        await _shared.disconnect()
        _shared = None
