"""Turn scheduler: runs one user turn end-to-end.

Turn flow:
  1. Append the user message (optionally with an image), touch the chat.
  2. Snapshot the chat as the rolling context for this turn.
  3. For each participant, in participant-list order, one at a time:
       a. append a loading placeholder ("...")
       b. stream generate_turn() into the placeholder
       c. parse the final text:
            silence → remove the placeholder
            image   → strip the directive, attach a generated image (best effort);
                      a directive-only reply whose image fails counts as silence
            text    → finalize the placeholder in place
       d. append the reply to the rolling context so later participants see it
       e. spawn a detached memory revision for the speaker
  4. A failing participant loses its placeholder and the loop moves on.

States: IDLE → USER_APPENDED → GENERATING → SILENCED | FAILED | FINALIZED
        → GENERATING (next participant) | COMPLETE

One TurnScheduler instance drives exactly one turn.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from enum import Enum

from persona_chat.llm import Provider, QuotaExceeded, TurnRequest
from persona_chat.models import USER_SENDER, Character, Message
from persona_chat.state import USER_LABEL, SessionStateStore

from .evolution import RECENT_EXCHANGES, EvolutionUpdater
from .stream import StreamAccumulator
from .tags import ImageDirective, SilenceDirective, parse_reply

logger = logging.getLogger(__name__)

PLACEHOLDER_TEXT = "..."
INLINE_IMAGE_MAX_PX = 800
GENERATION_BANNER = "The character could not answer. Please try again."


class TurnState(str, Enum):
    IDLE = "idle"
    USER_APPENDED = "user_appended"
    GENERATING = "generating"
    SILENCED = "silenced"
    FAILED = "failed"
    FINALIZED = "finalized"
    COMPLETE = "complete"


@dataclass
class TurnOutcome:
    user_message: Message
    messages: list[Message] = field(default_factory=list)  # finalized replies, in order
    silent: list[str] = field(default_factory=list)  # character ids
    failed: list[str] = field(default_factory=list)  # character ids
    banner: str | None = None


class TurnScheduler:
    def __init__(
        self,
        store: SessionStateStore,
        provider: Provider,
        evolution: EvolutionUpdater | None = None,
    ) -> None:
        self._store = store
        self._provider = provider
        self._evolution = evolution or EvolutionUpdater(store, provider)
        self.state = TurnState.IDLE
        self.current: str | None = None  # character id being generated

    def _enter(self, state: TurnState) -> None:
        logger.debug("turn state %s -> %s", self.state.value, state.value)
        self.state = state

    async def run(self, chat_id: str, text: str, image: str | None = None) -> TurnOutcome:
        """Execute one user turn and return what it produced."""
        if self.state is not TurnState.IDLE:
            raise RuntimeError("A TurnScheduler runs a single turn")
        chat = self._store.get_chat(chat_id)
        if chat is None:
            raise KeyError(f"Chat {chat_id} not found")

        # 1. User message
        user_msg = Message(
            sender_id=USER_SENDER, sender_name=USER_LABEL, content=text, image_url=image,
        )
        self._store.append_message(chat_id, user_msg, persist=False)
        self._store.touch_chat(chat_id)
        self._enter(TurnState.USER_APPENDED)

        # 2. Rolling context + participant queue
        chat = self._store.get_chat(chat_id)
        context = [m for m in chat.messages if not m.is_loading]
        participants = [
            c for c in (self._store.get_character(cid) for cid in chat.participants) if c
        ]
        if len(participants) < len(chat.participants):
            logger.warning(
                "chat %s: %d participant(s) no longer exist, skipping them",
                chat_id, len(chat.participants) - len(participants),
            )
        queue: deque[str] = deque((c.id for c in participants), maxlen=len(participants) or 1)
        names = {c.id: c.name for c in participants}
        outcome = TurnOutcome(user_message=user_msg)

        # 3. One participant at a time
        while queue:
            chat = self._store.get_chat(chat_id)
            if chat is None:
                logger.warning("chat %s deleted mid-turn, stopping", chat_id)
                break
            character = self._store.get_character(queue.popleft())
            if character is None:
                continue
            others = [name for cid, name in names.items() if cid != character.id]
            await self._step(
                chat_id, character, context, others, chat.is_nsfw, image,
                solo=len(participants) == 1, outcome=outcome,
            )

        self.current = None
        self._enter(TurnState.COMPLETE)
        logger.info(
            "turn complete chat=%s replies=%d silent=%d failed=%d",
            chat_id, len(outcome.messages), len(outcome.silent), len(outcome.failed),
        )
        return outcome

    async def _step(
        self,
        chat_id: str,
        character: Character,
        context: list[Message],
        others: list[str],
        nsfw: bool,
        image: str | None,
        *,
        solo: bool,
        outcome: TurnOutcome,
    ) -> None:
        self.current = character.id
        placeholder = Message(
            sender_id=character.id, sender_name=character.name,
            content=PLACEHOLDER_TEXT, is_loading=True,
        )
        self._store.append_message(chat_id, placeholder, persist=False)
        self._enter(TurnState.GENERATING)

        request = TurnRequest(
            name=character.name,
            persona=character.description,
            bio=character.bio_with_height(),
            memory=character.evolution_context,
            context=[m.as_line() for m in context],
            co_participants=others,
            nsfw=nsfw,
            image=image,
        )
        try:
            text = await StreamAccumulator(self._store, chat_id, placeholder.id).consume(
                self._provider.generate_turn(request)
            )
        except QuotaExceeded as e:
            logger.warning("quota exceeded for %s", character.name)
            self._rollback(chat_id, placeholder, character, outcome)
            outcome.banner = str(e)
            return
        except Exception as e:
            logger.error("generation failed for %s: %s", character.name, e)
            self._rollback(chat_id, placeholder, character, outcome)
            if solo and outcome.banner is None:
                outcome.banner = GENERATION_BANNER
            return

        directive = parse_reply(text)
        if isinstance(directive, SilenceDirective):
            self._store.remove_message(chat_id, placeholder.id, persist=False)
            outcome.silent.append(character.id)
            self._enter(TurnState.SILENCED)
            return

        image_url = None
        if isinstance(directive, ImageDirective):
            image_url = await self._illustrate(character, directive.prompt)
            if not directive.text and image_url is None:
                # nothing left to show
                self._store.remove_message(chat_id, placeholder.id, persist=False)
                outcome.silent.append(character.id)
                self._enter(TurnState.SILENCED)
                return

        final = placeholder.model_copy(update={
            "content": directive.text,
            "image_url": image_url,
            "is_loading": False,
        })
        if not self._store.replace_message(chat_id, final):
            logger.warning("placeholder for %s vanished before finalizing", character.name)
            return
        context.append(final)
        outcome.messages.append(final)
        self._enter(TurnState.FINALIZED)

        self._evolution.spawn(
            character.id, [m.as_line() for m in context[-RECENT_EXCHANGES:]]
        )

    def _rollback(
        self, chat_id: str, placeholder: Message, character: Character, outcome: TurnOutcome
    ) -> None:
        self._store.remove_message(chat_id, placeholder.id, persist=False)
        outcome.failed.append(character.id)
        self._enter(TurnState.FAILED)

    async def _illustrate(self, character: Character, prompt: str) -> str | None:
        """Image for an inline directive. Never blocks the text on failure."""
        references = [character.avatar] if character.avatar else []
        try:
            url = await self._provider.generate_image(prompt, references)
            if url.startswith("data:image"):
                url = await self._store.shrink(url, INLINE_IMAGE_MAX_PX)
        except Exception as e:
            logger.warning("inline image for %s failed: %s", character.name, e)
            return None
        return url or None
