"""Chat endpoints: sessions, turns, media, backgrounds and speech."""

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import Response

from persona_chat.llm import Provider, QuotaExceeded
from persona_chat.models import ChatSession
from persona_chat.pipeline import (
    EvolutionUpdater,
    MediaGenerationFailure,
    MediaJob,
    SpeechService,
    TurnScheduler,
)
from persona_chat.state import SessionStateStore

from .deps import get_evolution, get_media, get_provider, get_speech, get_store
from .models import CreateChat, MediaBody, SendMessage, TurnResponse, UpdateChat

router = APIRouter()


def chat_view(store: SessionStateStore, chat: ChatSession) -> dict:
    """Chat as JSON, each message carrying the sender's current display label."""
    data = chat.model_dump(mode="json")
    for raw, message in zip(data["messages"], chat.messages):
        raw["sender_label"] = store.sender_label(message)
    return data


def _media_error(e: MediaGenerationFailure) -> HTTPException:
    return HTTPException(429 if isinstance(e.__cause__, QuotaExceeded) else 502, str(e))


@router.get("/chats")
async def list_chats(store: SessionStateStore = Depends(get_store)):
    """List chats (without messages), newest first."""
    return [c.model_dump(mode="json", exclude={"messages"}) for c in store.list_chats()]


@router.post("/chats", status_code=201)
async def create_chat(body: CreateChat, store: SessionStateStore = Depends(get_store)):
    """Create a group chat with the given characters, in that order."""
    try:
        chat = store.create_group_chat(body.character_ids)
    except KeyError:
        raise HTTPException(404, "Character not found")
    except ValueError as e:
        raise HTTPException(400, str(e))
    return chat_view(store, chat)


@router.post("/chats/direct/{character_id}")
async def start_direct_chat(character_id: str, store: SessionStateStore = Depends(get_store)):
    """Open the one-on-one chat with a character, creating it on first use."""
    if not store.get_character(character_id):
        raise HTTPException(404, "Character not found")
    return chat_view(store, store.start_direct_chat(character_id))


@router.get("/chats/{chat_id}")
async def get_chat(chat_id: str, store: SessionStateStore = Depends(get_store)):
    chat = store.get_chat(chat_id)
    if not chat:
        raise HTTPException(404, "Chat not found")
    return chat_view(store, chat)


@router.patch("/chats/{chat_id}")
async def update_chat(chat_id: str, body: UpdateChat, store: SessionStateStore = Depends(get_store)):
    """Rename a chat or toggle its NSFW flag."""
    chat = store.update_chat(chat_id, body.model_dump(exclude_none=True))
    if not chat:
        raise HTTPException(404, "Chat not found")
    return chat_view(store, chat)


@router.delete("/chats/{chat_id}")
async def delete_chat(chat_id: str, store: SessionStateStore = Depends(get_store)):
    if not store.delete_chat(chat_id):
        raise HTTPException(404, "Chat not found")
    return {"ok": True}


@router.post("/chats/{chat_id}/messages", response_model=TurnResponse)
async def send_message(
    chat_id: str,
    body: SendMessage,
    store: SessionStateStore = Depends(get_store),
    provider: Provider = Depends(get_provider),
    evolution: EvolutionUpdater = Depends(get_evolution),
):
    """Send a user message and let every participant answer in turn."""
    if not store.get_chat(chat_id):
        raise HTTPException(404, "Chat not found")
    outcome = await TurnScheduler(store, provider, evolution).run(chat_id, body.text, body.image)
    chat = store.get_chat(chat_id)
    return TurnResponse(
        chat=chat_view(store, chat) if chat else None,
        replies=outcome.messages,
        banner=outcome.banner,
    )


@router.post("/chats/{chat_id}/media")
async def generate_media(
    chat_id: str, body: MediaBody, media: MediaJob = Depends(get_media),
):
    """Render a photo or a short video of the current scene into the chat."""
    try:
        return await media.generate(chat_id, body.kind)
    except KeyError:
        raise HTTPException(404, "Chat not found")
    except MediaGenerationFailure as e:
        raise _media_error(e)


@router.post("/chats/{chat_id}/background")
async def generate_background(chat_id: str, media: MediaJob = Depends(get_media)):
    """Paint a new chat background from the current scene."""
    try:
        url = await media.generate_background(chat_id)
    except KeyError:
        raise HTTPException(404, "Chat not found")
    if not url:
        raise HTTPException(502, "Background generation failed")
    return {"background_url": url}


@router.get("/chats/{chat_id}/messages/{message_id}/speech")
async def message_speech(
    chat_id: str, message_id: str, speech: SpeechService = Depends(get_speech),
):
    """Audio of a message read in its sender's voice."""
    try:
        audio = await speech.speak(chat_id, message_id)
    except KeyError:
        raise HTTPException(404, "Message not found")
    if audio is None:
        raise HTTPException(404, "No speech available for this message")
    return Response(content=audio, media_type="audio/mpeg")
