"""Pydantic request/response models for API endpoints."""

from typing import Literal

from pydantic import BaseModel, Field

from persona_chat.models import GalleryType, Message


class CreateCharacter(BaseModel):
    name: str
    description: str
    bio: str | None = None
    avatar: str = ""
    height: int | None = None
    voice: str | None = None
    voice_pitch: int = Field(default=0, ge=-1200, le=1200)
    voice_speed: float = Field(default=1.0, ge=0.5, le=2.0)
    color: str = "#6366f1"


class AvatarBody(BaseModel):
    description: str


class CreateChat(BaseModel):
    character_ids: list[str]


class UpdateChat(BaseModel):
    name: str | None = None
    is_nsfw: bool | None = None


class SendMessage(BaseModel):
    text: str
    image: str | None = None  # data URI attached by the user


class MediaBody(BaseModel):
    kind: Literal["photo", "video"]


class TurnResponse(BaseModel):
    chat: dict | None  # None when the chat was deleted mid-turn
    replies: list[Message]
    banner: str | None = None


class CreateGalleryItem(BaseModel):
    url: str
    type: GalleryType
    caption: str | None = None
