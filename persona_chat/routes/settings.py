"""Health check and settings endpoints."""

from fastapi import APIRouter, Depends

from persona_chat.config import Settings
from persona_chat.state import SessionStateStore

from .deps import get_settings, get_store

router = APIRouter()


@router.get("/health")
async def health(store: SessionStateStore = Depends(get_store)):
    """Health check. Reports whether the session store has finished loading."""
    return {"status": "ok", "loaded": store.loaded}


@router.get("/settings")
async def read_settings(settings: Settings = Depends(get_settings)):
    """Effective runtime settings. The API key itself is never returned."""
    data = settings.model_dump(mode="json", exclude={"api_key"})
    data["has_api_key"] = bool(settings.api_key)
    return data
