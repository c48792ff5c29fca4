"""Gallery endpoints."""

from fastapi import APIRouter, Depends, HTTPException

from persona_chat.state import SessionStateStore

from .deps import get_store
from .models import CreateGalleryItem

router = APIRouter()


@router.get("/gallery")
async def list_gallery(store: SessionStateStore = Depends(get_store)):
    """Saved pictures, clips and backgrounds, newest first."""
    return store.list_gallery()


@router.post("/gallery", status_code=201)
async def add_to_gallery(body: CreateGalleryItem, store: SessionStateStore = Depends(get_store)):
    return await store.add_to_gallery(body.url, body.type, body.caption)


@router.delete("/gallery/{item_id}")
async def delete_from_gallery(item_id: str, store: SessionStateStore = Depends(get_store)):
    if not store.delete_from_gallery(item_id):
        raise HTTPException(404, "Gallery item not found")
    return {"ok": True}
