"""FastAPI API endpoints under /api.

Endpoint groups: health, characters (plus avatar generation), chats (turns,
media, backgrounds, speech) and gallery. Shared services live on
app.state and are reached through the dependencies in deps.py.
"""

from fastapi import APIRouter

from .characters import router as characters_router
from .chats import router as chats_router
from .gallery import router as gallery_router
from .settings import router as settings_router

router = APIRouter()
router.include_router(settings_router)
router.include_router(characters_router)
router.include_router(chats_router)
router.include_router(gallery_router)
