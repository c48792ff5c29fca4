"""Dual-tier key/value store: SQLite primary + JSON file mirror.

Reads go primary first and fall back to the mirror when the primary errors
or has nothing. Writes go to the primary (awaited, the durability signal)
and then to the mirror if the value fits under the ceiling. Failures never
reach the caller: primary failures are logged as errors, mirror failures
are swallowed. Values are opaque; the store never looks inside them.
"""

import asyncio
import logging
from pathlib import Path
from typing import Any

from .mirror import DEFAULT_CEILING, CeilingExceeded, MirrorStore
from .primary import PrimaryHandle, PrimaryUnavailable

logger = logging.getLogger(__name__)

PRIMARY_FILENAME = "persona_chat.db"
MIRROR_DIRNAME = "mirror"


class PersistenceStore:
    def __init__(self, primary: PrimaryHandle, mirror: MirrorStore) -> None:
        self._primary = primary
        self._mirror = mirror

    @classmethod
    def at(cls, data_dir: Path, mirror_ceiling: int = DEFAULT_CEILING) -> "PersistenceStore":
        """Store rooted at `data_dir` using the standard file layout."""
        return cls(
            PrimaryHandle(data_dir / PRIMARY_FILENAME),
            MirrorStore(data_dir / MIRROR_DIRNAME, ceiling=mirror_ceiling),
        )

    async def get(self, key: str) -> Any | None:
        try:
            value = await asyncio.to_thread(self._primary.get, key)
        except (PrimaryUnavailable, ValueError) as e:
            logger.warning("primary read failed key=%s: %s", key, e)
            value = None
        if value is not None:
            return value

        try:
            return self._mirror.get(key)
        except (OSError, ValueError) as e:
            logger.warning("mirror read failed key=%s: %s", key, e)
            return None

    async def set(self, key: str, value: Any) -> None:
        try:
            await asyncio.to_thread(self._primary.put, key, value)
        except (PrimaryUnavailable, TypeError, ValueError) as e:
            logger.error("primary write failed key=%s: %s", key, e)

        try:
            self._mirror.set(key, value)
        except CeilingExceeded as e:
            logger.debug("mirror write skipped: %s", e)
        except (OSError, TypeError, ValueError) as e:
            logger.debug("mirror write failed key=%s: %s", key, e)

    async def delete(self, key: str) -> None:
        try:
            self._mirror.delete(key)
        except OSError as e:
            logger.debug("mirror delete failed key=%s: %s", key, e)
        try:
            await asyncio.to_thread(self._primary.delete, key)
        except PrimaryUnavailable as e:
            logger.debug("primary delete failed key=%s: %s", key, e)

    async def close(self) -> None:
        await asyncio.to_thread(self._primary.close)
