"""Speech service tests."""

import pytest

from persona_chat.models import Message
from persona_chat.pipeline import SpeechService
from persona_chat.pipeline.speech import DEFAULT_VOICE


@pytest.fixture
def speech(store, provider) -> SpeechService:
    return SpeechService(store, provider)


def _say(store, chat_id, sender_id, sender_name, content) -> Message:
    return store.append_message(
        chat_id, Message(sender_id=sender_id, sender_name=sender_name, content=content)
    )


async def test_uses_character_voice(store, provider, speech, make_character):
    char = make_character("Alice", voice="nova", voice_speed=1.25)
    chat = store.start_direct_chat(char.id)
    msg = _say(store, chat.id, char.id, "Alice", "*smiles* Hello there [GEN_IMG: a smile]")

    audio = await speech.speak(chat.id, msg.id)

    assert audio == b"ID3-audio"
    (call,) = provider.called("synthesize_speech")
    assert call[1:] == ("Hello there", "nova", 1.25)


async def test_default_voice(store, provider, speech, make_character):
    char = make_character("Bob")
    chat = store.start_direct_chat(char.id)
    user_msg = _say(store, chat.id, "user", "You", "Hi Bob")

    await speech.speak(chat.id, user_msg.id)

    (call,) = provider.called("synthesize_speech")
    assert call[2:] == (DEFAULT_VOICE, 1.0)


async def test_nothing_to_say(store, provider, speech, make_character):
    char = make_character("Alice")
    chat = store.start_direct_chat(char.id)
    msg = _say(store, chat.id, char.id, "Alice", "*nods silently*")

    assert await speech.speak(chat.id, msg.id) is None
    assert provider.called("synthesize_speech") == []


async def test_unknown_message(store, speech, make_character):
    chat = store.start_direct_chat(make_character("Alice").id)
    with pytest.raises(KeyError):
        await speech.speak(chat.id, "missing")
