"""Background revision of a character's evolution memory.

After each finalized reply the scheduler spawns a revision for the speaker.
The task runs detached from the turn; when it resolves the result is merged
with one rule: it is applied only if it differs from the character's
*current* memory. Later resolutions overwrite earlier ones (last resolved
wins), and a character deleted in the meantime is left alone.
"""

import asyncio
import logging

from persona_chat.llm import Provider
from persona_chat.models import Character
from persona_chat.state import SessionStateStore

logger = logging.getLogger(__name__)

RECENT_EXCHANGES = 10


class EvolutionUpdater:
    def __init__(self, store: SessionStateStore, provider: Provider) -> None:
        self._store = store
        self._provider = provider
        self._tasks: set[asyncio.Task] = set()

    async def revise(self, character: Character, recent: list[tuple[str, str]]) -> str:
        """Revised memory text; the unchanged memory on any failure."""
        current = character.evolution_context or ""
        try:
            revised = await self._provider.revise_memory(
                character.name, character.description,
                character.evolution_context, recent[-RECENT_EXCHANGES:],
            )
        except Exception:
            logger.exception("memory revision failed for %s", character.name)
            return current
        return revised if revised is not None else current

    def spawn(self, character_id: str, recent: list[tuple[str, str]]) -> asyncio.Task | None:
        """Start a detached revision. Returns the task, or None if the character is gone."""
        character = self._store.get_character(character_id)
        if character is None:
            return None
        task = asyncio.create_task(self._run(character, list(recent)))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run(self, character: Character, recent: list[tuple[str, str]]) -> None:
        revised = await self.revise(character, recent)
        latest = self._store.get_character(character.id)
        if latest is None:
            logger.debug("character %s deleted before memory revision landed", character.id)
            return
        if revised == (latest.evolution_context or ""):
            return
        self._store.update_character(latest.model_copy(update={"evolution_context": revised}))
        logger.info("memory updated for %s", latest.name)

    async def drain(self) -> None:
        """Wait for outstanding revisions (shutdown and tests)."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks))
