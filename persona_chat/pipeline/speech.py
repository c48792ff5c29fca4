"""Read a chat message aloud in its sender's voice."""

import logging

from persona_chat.llm import Provider
from persona_chat.models import USER_SENDER
from persona_chat.state import SessionStateStore

from .tags import strip_for_speech

logger = logging.getLogger(__name__)

DEFAULT_VOICE = "alloy"


class SpeechService:
    def __init__(self, store: SessionStateStore, provider: Provider) -> None:
        self._store = store
        self._provider = provider

    async def speak(self, chat_id: str, message_id: str) -> bytes | None:
        """Audio for a message, or None when there is nothing to say or synthesis fails."""
        message = self._store.find_message(chat_id, message_id)
        if message is None:
            raise KeyError(f"Message {message_id} not found")

        voice, speed = DEFAULT_VOICE, 1.0
        if message.sender_id != USER_SENDER:
            char = self._store.get_character(message.sender_id)
            if char is not None:
                voice, speed = char.voice or DEFAULT_VOICE, char.voice_speed

        text = strip_for_speech(message.content)
        if not text:
            return None
        try:
            return await self._provider.synthesize_speech(text, voice, speed)
        except Exception:
            logger.exception("speech synthesis failed for message %s", message_id)
            return None
