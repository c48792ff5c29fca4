"""Character CRUD endpoints."""

from fastapi import APIRouter, Depends, HTTPException

from persona_chat.llm import QuotaExceeded
from persona_chat.models import Character
from persona_chat.pipeline import MediaGenerationFailure, MediaJob
from persona_chat.state import SessionStateStore

from .deps import get_media, get_store
from .models import AvatarBody, CreateCharacter

router = APIRouter()


@router.get("/characters")
async def list_characters(store: SessionStateStore = Depends(get_store)):
    """List all characters, newest first."""
    return store.list_characters()


@router.post("/characters", status_code=201)
async def create_character(body: CreateCharacter, store: SessionStateStore = Depends(get_store)):
    """Create a new character."""
    return store.save_character(Character(**body.model_dump()))


@router.post("/characters/avatar")
async def generate_avatar(body: AvatarBody, media: MediaJob = Depends(get_media)):
    """Generate a portrait from a free-text description."""
    try:
        url = await media.generate_avatar(body.description)
    except MediaGenerationFailure as e:
        status = 429 if isinstance(e.__cause__, QuotaExceeded) else 502
        raise HTTPException(status, str(e))
    return {"avatar": url}


@router.get("/characters/{character_id}")
async def get_character(character_id: str, store: SessionStateStore = Depends(get_store)):
    """Get a single character by id."""
    char = store.get_character(character_id)
    if not char:
        raise HTTPException(404, "Character not found")
    return char


@router.put("/characters/{character_id}")
async def update_character(
    character_id: str, body: CreateCharacter, store: SessionStateStore = Depends(get_store)
):
    """Replace a character's editable fields. Memory and creation time are kept."""
    char = store.get_character(character_id)
    if not char:
        raise HTTPException(404, "Character not found")
    return store.update_character(char.model_copy(update=body.model_dump()))


@router.delete("/characters/{character_id}")
async def delete_character(character_id: str, store: SessionStateStore = Depends(get_store)):
    """Remove a character. Chats it took part in keep their history."""
    if not store.delete_character(character_id):
        raise HTTPException(404, "Character not found")
    return {"ok": True}
