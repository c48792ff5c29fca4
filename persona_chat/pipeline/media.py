"""User-triggered media generation: scene photos, video clips, backgrounds, avatars.

Photo / video flow (MediaJob.generate):
  1. Append a loading placeholder "⏳ Summarizing scene...".
  2. summarize_scene() over the last 15 messages and participant looks.
  3. Placeholder status → "🎨 Rendering image..." / "🎬 Rendering video...".
  4. Render:
       photo: generate_image(summary, participant avatars)
       video: submit_video(summary), then poll_video() every poll_interval
               seconds until done. Unbounded unless max_polls is set.
               CredentialSelectionRequired → select_credentials(), retry once.
  5. Replace the placeholder (same id) with the finished message.
  Any failure removes the placeholder and raises MediaGenerationFailure.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Literal

from persona_chat import prompts
from persona_chat.llm import CredentialSelectionRequired, GenerationFailure, Provider, QuotaExceeded
from persona_chat.models import Character, ChatSession, Message
from persona_chat.state import SessionStateStore

logger = logging.getLogger(__name__)

MediaKind = Literal["photo", "video"]

SUMMARIZING = "⏳ Summarizing scene..."
RENDERING = {"photo": "🎨 Rendering image...", "video": "🎬 Rendering video..."}
CAPTIONS = {"photo": "Photo from the scene:", "video": "Video clip:"}
SCENE_WINDOW = 15
MEDIA_MAX_PX = 800

CredentialSelector = Callable[[], Awaitable[None]]


class MediaGenerationFailure(RuntimeError):
    """Raised when a media job fails; the message is safe to show the user."""


class MediaJob:
    def __init__(
        self,
        store: SessionStateStore,
        provider: Provider,
        *,
        poll_interval: float = 5.0,
        max_polls: int | None = None,
        select_credentials: CredentialSelector | None = None,
    ) -> None:
        self._store = store
        self._provider = provider
        self._poll_interval = poll_interval
        self._max_polls = max_polls
        self._select_credentials = select_credentials

    def _participants(self, chat: ChatSession) -> list[Character]:
        return [c for c in (self._store.get_character(cid) for cid in chat.participants) if c]

    async def _summarize(self, chat: ChatSession, participants: list[Character]) -> str:
        messages = [m.as_line() for m in chat.messages if not m.is_loading]
        return await self._provider.summarize_scene(
            messages[-SCENE_WINDOW:], [c.visual_description() for c in participants]
        )

    async def generate(self, chat_id: str, kind: MediaKind) -> Message:
        """Run a photo or video job for a chat and return the finished message."""
        if kind not in CAPTIONS:
            raise ValueError(f"Unknown media kind {kind!r}")
        chat = self._store.get_chat(chat_id)
        if chat is None:
            raise KeyError(f"Chat {chat_id} not found")
        participants = self._participants(chat)
        if participants:
            sender_id, sender_name = participants[0].id, participants[0].name
        else:
            sender_id, sender_name = "system", "System"

        placeholder = Message(
            sender_id=sender_id, sender_name=sender_name, content=SUMMARIZING, is_loading=True,
        )
        self._store.append_message(chat_id, placeholder, persist=False)

        try:
            summary = await self._summarize(chat, participants)
            logger.debug("scene summary chat=%s: %s", chat_id, summary)
            self._store.replace_message(
                chat_id, placeholder.model_copy(update={"content": RENDERING[kind]}), persist=False,
            )
            if kind == "photo":
                url = await self._provider.generate_image(
                    summary, [c.avatar for c in participants if c.avatar]
                )
                if url.startswith("data:image"):
                    url = await self._store.shrink(url, MEDIA_MAX_PX)
            else:
                url = await self._render_video(summary)
            if not url:
                raise GenerationFailure("Empty media reference")
        except Exception as e:
            logger.error("%s generation failed for chat %s: %s", kind, chat_id, e)
            self._store.remove_message(chat_id, placeholder.id, persist=False)
            if isinstance(e, QuotaExceeded):
                raise MediaGenerationFailure(str(e)) from e
            raise MediaGenerationFailure(f"Media generation failed: {e}") from e

        final = Message(
            id=placeholder.id,
            sender_id=sender_id,
            sender_name=sender_name,
            content=CAPTIONS[kind],
            image_url=url if kind == "photo" else None,
            video_url=url if kind == "video" else None,
        )
        if not self._store.replace_message(chat_id, final):
            raise MediaGenerationFailure("The chat was deleted while media was generating")
        logger.info("%s ready for chat %s", kind, chat_id)
        return final

    async def _render_video(self, summary: str) -> str:
        try:
            return await self._video_once(summary)
        except CredentialSelectionRequired:
            if self._select_credentials is None:
                raise
            logger.warning("video credentials rejected, asking for a new selection")
            await self._select_credentials()
            return await self._video_once(summary)

    async def _video_once(self, summary: str) -> str:
        job = await self._provider.submit_video(summary)
        polls = 0
        while True:
            await asyncio.sleep(self._poll_interval)
            status = await self._provider.poll_video(job)
            polls += 1
            if status.done:
                logger.debug("video job %s done after %d polls", job, polls)
                return status.url or ""
            if self._max_polls is not None and polls >= self._max_polls:
                raise GenerationFailure(f"Video job {job} still pending after {polls} polls")

    async def generate_background(self, chat_id: str) -> str | None:
        """Paint a background for the chat from the current scene. None if nothing came back."""
        chat = self._store.get_chat(chat_id)
        if chat is None:
            raise KeyError(f"Chat {chat_id} not found")
        participants = self._participants(chat)
        summary = await self._summarize(chat, participants)
        url = await self._provider.generate_background(
            summary, [c.avatar for c in participants if c.avatar]
        )
        if not url:
            return None
        self._store.update_chat(chat_id, {"background_url": url})
        return url

    async def generate_avatar(self, description: str) -> str:
        """Portrait for a character being created."""
        try:
            url = await self._provider.generate_image(prompts.avatar_prompt(description), [])
        except GenerationFailure as e:
            raise MediaGenerationFailure(str(e)) from e
        if url.startswith("data:image"):
            url = await self._store.shrink(url, MEDIA_MAX_PX)
        return url
