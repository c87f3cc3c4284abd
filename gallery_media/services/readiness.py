import asyncio
import time
from typing import Protocol

from loguru import logger

from gallery_media.config import Settings
from gallery_media.services.storage import ObjectStorage

READY_PREFIX = "ready/"
READY_CONTENT_TYPE = "application/octet-stream"


class ReadinessStore(Protocol):
    def mark_ready(self, key: str) -> None: ...

    def is_ready(self, key: str) -> bool: ...

    def clear(self, key: str) -> None: ...


class InMemoryReadinessStore:
    def __init__(self, ttl_seconds: float = 3600.0):
        self.ttl_seconds = ttl_seconds
        self._flags: dict[str, float] = {}

    def mark_ready(self, key: str) -> None:
        now = time.monotonic()
        self._prune(now)
        self._flags[key] = now + self.ttl_seconds

    def is_ready(self, key: str) -> bool:
        expires_at = self._flags.get(key)
        if expires_at is None:
            return False
        if expires_at <= time.monotonic():
            self._flags.pop(key, None)
            return False
        return True

    def clear(self, key: str) -> None:
        self._flags.pop(key, None)

    def _prune(self, now: float) -> None:
        expired = [key for key, expires_at in self._flags.items() if expires_at <= now]
        for key in expired:
            del self._flags[key]


class StorageReadinessStore:
    """Readiness flags kept as empty marker objects next to the derived assets.

    Detached workers on other hosts share the object store, so the marker is
    visible to whichever process is waiting. Callers clear the marker before
    dispatching a transform, so a marker left by an earlier run is never
    mistaken for the current one.
    """

    def __init__(self, storage: ObjectStorage, prefix: str = READY_PREFIX):
        self.storage = storage
        self.prefix = prefix

    def _marker(self, key: str) -> str:
        return f"{self.prefix}{key}"

    def mark_ready(self, key: str) -> None:
        self.storage.put(self._marker(key), b"", READY_CONTENT_TYPE)

    def is_ready(self, key: str) -> bool:
        return self.storage.exists(self._marker(key))

    def clear(self, key: str) -> None:
        self.storage.delete(self._marker(key))


def build_readiness_store(app_settings: Settings, storage: ObjectStorage) -> ReadinessStore:
    if app_settings.transform_mode == "detached":
        return StorageReadinessStore(storage)
    return InMemoryReadinessStore(ttl_seconds=app_settings.readiness_ttl_seconds)


async def wait_until_ready(
    store: ReadinessStore,
    keys: list[str],
    max_attempts: int,
    interval_ms: int,
) -> bool:
    pending = list(keys)
    for attempt in range(1, max_attempts + 1):
        checks = await asyncio.gather(*(asyncio.to_thread(store.is_ready, key) for key in pending))
        pending = [key for key, ready in zip(pending, checks) if not ready]
        if not pending:
            logger.debug("Readiness confirmed keys={} attempts={}", keys, attempt)
            return True
        if attempt < max_attempts:
            await asyncio.sleep(interval_ms / 1000)
    logger.warning("Readiness not reached keys={} pending={} attempts={}", keys, pending, max_attempts)
    return False
