"""Apply cumulative stream snapshots to a placeholder message."""

import logging
from collections.abc import AsyncIterator

from persona_chat.state import SessionStateStore

logger = logging.getLogger(__name__)


class StreamAccumulator:
    """Drives one participant's snapshot stream onto one placeholder.

    Each snapshot is the full text so far, so it replaces the placeholder
    content wholesale. Snapshots are applied in arrival order and never
    merged. Stream updates are published but not persisted; the placeholder
    is still loading and would be filtered out anyway.
    """

    def __init__(self, store: SessionStateStore, chat_id: str, placeholder_id: str) -> None:
        self._store = store
        self._chat_id = chat_id
        self._placeholder_id = placeholder_id
        self.applied = 0

    async def consume(self, snapshots: AsyncIterator[str]) -> str:
        """Apply every snapshot and return the last one ("" if none arrived)."""
        text = ""
        async for snapshot in snapshots:
            text = snapshot
            current = self._store.find_message(self._chat_id, self._placeholder_id)
            if current is None:
                # chat or placeholder went away mid-stream; keep draining
                continue
            self._store.replace_message(
                self._chat_id,
                current.model_copy(update={"content": snapshot}),
                persist=False,
            )
            self.applied += 1
        logger.debug(
            "stream done chat=%s placeholder=%s applied=%d len=%d",
            self._chat_id, self._placeholder_id, self.applied, len(text),
        )
        return text
