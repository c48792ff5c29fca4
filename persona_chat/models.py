"""Core domain models.

Every pipeline stage and the session store operate on these types.
Pydantic is used for validation and serialisation at every data boundary;
the persistence layer itself only ever sees the JSON dumps.
"""

from __future__ import annotations

import random
import string
import time
from typing import Literal

from pydantic import BaseModel, Field

USER_SENDER = "user"
DEFAULT_HEIGHT_MM = 1700

GalleryType = Literal["image", "video", "background"]

_ID_ALPHABET = string.ascii_lowercase + string.digits


def new_id() -> str:
    """Short random base36 id, e.g. "k3x9q0b1z"."""
    return "".join(random.choices(_ID_ALPHABET, k=9))


def now_ms() -> int:
    return int(time.time() * 1000)


class Character(BaseModel):
    """An AI persona the user can chat with."""

    id: str = Field(default_factory=new_id)
    name: str
    description: str  # persona text, drives behaviour
    bio: str | None = None
    avatar: str = ""  # data URI or URL, used as visual reference
    height: int | None = None  # mm
    voice: str | None = None
    voice_pitch: int = Field(default=0, ge=-1200, le=1200)  # cents
    voice_speed: float = Field(default=1.0, ge=0.5, le=2.0)
    color: str = "#6366f1"
    created_at: int = Field(default_factory=now_ms)
    evolution_context: str | None = None  # accumulated memory

    def height_mm(self) -> int:
        return self.height or DEFAULT_HEIGHT_MM

    def bio_with_height(self) -> str:
        """Biography with the height interpolated in front of it."""
        return f"Height: {self.height_mm()}mm. {self.bio or ''}".strip()

    def visual_description(self) -> str:
        return f"Name: {self.name}, Height: {self.height_mm()}mm, Appearance: {self.description}"


class Message(BaseModel):
    """A single entry in a chat session's message list."""

    id: str = Field(default_factory=new_id)
    sender_id: str  # USER_SENDER | <character id>
    sender_name: str
    content: str
    image_url: str | None = None
    video_url: str | None = None
    timestamp: int = Field(default_factory=now_ms)
    is_loading: bool = False  # placeholder still in flight, never persisted

    def as_line(self) -> tuple[str, str]:
        """(sender, text) pair as providers see it; the user is always USER_SENDER."""
        sender = USER_SENDER if self.sender_id == USER_SENDER else self.sender_name
        return sender, self.content


class ChatSession(BaseModel):
    """A direct (one participant) or group chat."""

    id: str = Field(default_factory=new_id)
    name: str
    participants: list[str]
    messages: list[Message] = Field(default_factory=list)
    background_url: str | None = None
    last_updated: int = Field(default_factory=now_ms)
    is_nsfw: bool = False

    @property
    def is_group(self) -> bool:
        return len(self.participants) > 1


class GalleryItem(BaseModel):
    """A saved image, video or background."""

    id: str = Field(default_factory=new_id)
    type: GalleryType
    url: str
    caption: str | None = None
    timestamp: int = Field(default_factory=now_ms)
