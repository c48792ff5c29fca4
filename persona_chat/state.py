"""In-memory session state: characters, chats and gallery items.

The store is the source of truth for the running process. Every mutation

  1. updates the in-memory collection,
  2. notifies subscribers (listener(collection_name)),
  3. schedules a background PersistenceStore.set of the whole collection.

Writes for the same key are chained, so the last mutation is always the last
write. A failed write is logged and the chain carries on behind it.
Messages still marked is_loading are dropped from the persisted copy: the
committed store only ever sees finalized messages.

Collections are insertion-ordered dicts keyed by id. Listings are newest
first, which is also the order they are persisted in.

Nothing can be mutated until load() has finished.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any, Literal

from pydantic import BaseModel, ValidationError

from persona_chat.models import (
    USER_SENDER,
    Character,
    ChatSession,
    GalleryItem,
    GalleryType,
    Message,
    now_ms,
)
from persona_chat.storage import PersistenceStore

logger = logging.getLogger(__name__)

CHARACTERS_KEY = "ai_rpg_chars"
CHATS_KEY = "ai_rpg_chats"
GALLERY_KEY = "ai_rpg_gallery"

USER_LABEL = "You"
REMOVED_PARTICIPANT = "(removed participant)"
GALLERY_MAX_PX = 800

Collection = Literal["characters", "chats", "gallery"]
Listener = Callable[[str], None]
Shrink = Callable[[str, int], Awaitable[str]]


class StoreNotLoaded(RuntimeError):
    """Raised when a mutation arrives before load() has completed."""


async def keep_image(image: str, max_px: int) -> str:
    """Default shrink hook: leave the image untouched."""
    return image


class SessionStateStore:
    def __init__(self, persistence: PersistenceStore, shrink: Shrink = keep_image) -> None:
        self._persistence = persistence
        self.shrink = shrink
        self._characters: dict[str, Character] = {}
        self._chats: dict[str, ChatSession] = {}
        self._gallery: dict[str, GalleryItem] = {}
        self._listeners: list[Listener] = []
        self._pending: set[asyncio.Task] = set()
        self._tails: dict[str, asyncio.Task] = {}
        self._loaded = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def loaded(self) -> bool:
        return self._loaded

    async def load(self) -> None:
        """Load all three collections, one after the other. Idempotent."""
        if self._loaded:
            return
        self._characters = await self._load_collection(CHARACTERS_KEY, Character)
        self._chats = await self._load_collection(CHATS_KEY, ChatSession)
        self._gallery = await self._load_collection(GALLERY_KEY, GalleryItem)
        self._loaded = True
        logger.info(
            "session store loaded characters=%d chats=%d gallery=%d",
            len(self._characters), len(self._chats), len(self._gallery),
        )

    async def _load_collection(self, key: str, model: type[BaseModel]) -> dict[str, Any]:
        raw = await self._persistence.get(key)
        items: dict[str, Any] = {}
        if raw is None:
            return items
        if not isinstance(raw, list):
            logger.warning("ignoring %s: expected a list, got %s", key, type(raw).__name__)
            return items
        # persisted newest first; the dict keeps insertion (oldest first) order
        for entry in reversed(raw):
            try:
                item = model.model_validate(entry)
            except ValidationError as e:
                logger.warning("skipping corrupt %s record: %s", key, e)
                continue
            items[item.id] = item
        return items

    async def flush(self) -> None:
        """Wait for every scheduled write to land."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def _require_loaded(self) -> None:
        if not self._loaded:
            raise StoreNotLoaded("Session store is still loading")

    # ------------------------------------------------------------------
    # Observation and persistence
    # ------------------------------------------------------------------

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a change listener. Returns a function that unsubscribes it."""
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener)

    def _commit(self, collection: Collection, persist: bool = True) -> None:
        for listener in list(self._listeners):
            listener(collection)
        if persist:
            key, payload = self._snapshot(collection)
            self._schedule_write(key, payload)

    def _snapshot(self, collection: Collection) -> tuple[str, list[dict]]:
        if collection == "characters":
            return CHARACTERS_KEY, [c.model_dump(mode="json") for c in self.list_characters()]
        if collection == "chats":
            return CHATS_KEY, [_dump_chat(c) for c in self.list_chats()]
        return GALLERY_KEY, [g.model_dump(mode="json") for g in self.list_gallery()]

    def _schedule_write(self, key: str, payload: list[dict]) -> None:
        previous = self._tails.get(key)

        async def write() -> None:
            if previous is not None:
                # ordering only; an earlier failure was already logged
                await asyncio.gather(previous, return_exceptions=True)
            try:
                await self._persistence.set(key, payload)
            except Exception:
                logger.exception("background write of %s failed", key)

        task = asyncio.create_task(write())
        self._tails[key] = task
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    # ------------------------------------------------------------------
    # Characters
    # ------------------------------------------------------------------

    def list_characters(self) -> list[Character]:
        return list(reversed(self._characters.values()))

    def get_character(self, character_id: str) -> Character | None:
        return self._characters.get(character_id)

    def save_character(self, character: Character) -> Character:
        """Upsert by id."""
        self._require_loaded()
        self._characters[character.id] = character
        self._commit("characters")
        return character

    def update_character(self, character: Character) -> Character:
        """Full-record replace of an existing character."""
        self._require_loaded()
        if character.id not in self._characters:
            raise KeyError(f"Character {character.id} not found")
        self._characters[character.id] = character
        self._commit("characters")
        return character

    def delete_character(self, character_id: str) -> bool:
        """Remove a character. Chats keep their history; see sender_label()."""
        self._require_loaded()
        if self._characters.pop(character_id, None) is None:
            return False
        self._commit("characters")
        return True

    # ------------------------------------------------------------------
    # Chats
    # ------------------------------------------------------------------

    def list_chats(self) -> list[ChatSession]:
        return list(reversed(self._chats.values()))

    def get_chat(self, chat_id: str) -> ChatSession | None:
        return self._chats.get(chat_id)

    def create_group_chat(self, character_ids: list[str]) -> ChatSession:
        """New chat with the given characters, in the given order."""
        self._require_loaded()
        participants: list[Character] = []
        for cid in dict.fromkeys(character_ids):
            char = self._characters.get(cid)
            if char is None:
                raise KeyError(f"Character {cid} not found")
            participants.append(char)
        if not participants:
            raise ValueError("A chat needs at least one participant")
        chat = ChatSession(
            name=", ".join(p.name for p in participants),
            participants=[p.id for p in participants],
        )
        self._chats[chat.id] = chat
        self._commit("chats")
        return chat

    def start_direct_chat(self, character_id: str) -> ChatSession:
        """Return the existing one-on-one chat with a character, or create it."""
        self._require_loaded()
        for chat in self._chats.values():
            if chat.participants == [character_id]:
                return chat
        return self.create_group_chat([character_id])

    def replace_chat(self, chat: ChatSession) -> ChatSession:
        """Full-record replace. The participant list may not change."""
        self._require_loaded()
        existing = self._chats.get(chat.id)
        if existing is None:
            raise KeyError(f"Chat {chat.id} not found")
        if existing.participants != chat.participants:
            raise ValueError("Chat participants cannot change after creation")
        self._chats[chat.id] = chat
        self._commit("chats")
        return chat

    def update_chat(self, chat_id: str, fields: dict[str, Any]) -> ChatSession | None:
        """Update mutable chat fields (name, is_nsfw, background_url). Returns updated chat."""
        self._require_loaded()
        chat = self._chats.get(chat_id)
        if chat is None:
            return None
        allowed = {"name", "is_nsfw", "background_url"}
        updated = chat.model_copy(update={k: v for k, v in fields.items() if k in allowed})
        self._chats[chat_id] = updated
        self._commit("chats")
        return updated

    def set_nsfw(self, chat_id: str, flag: bool) -> ChatSession | None:
        return self.update_chat(chat_id, {"is_nsfw": flag})

    def delete_chat(self, chat_id: str) -> bool:
        self._require_loaded()
        if self._chats.pop(chat_id, None) is None:
            return False
        self._commit("chats")
        return True

    # ------------------------------------------------------------------
    # Messages (driven by the pipeline)
    # ------------------------------------------------------------------

    def _chat_or_raise(self, chat_id: str) -> ChatSession:
        self._require_loaded()
        chat = self._chats.get(chat_id)
        if chat is None:
            raise KeyError(f"Chat {chat_id} not found")
        return chat

    def append_message(self, chat_id: str, message: Message, persist: bool = True) -> Message:
        chat = self._chat_or_raise(chat_id)
        chat.messages.append(message)
        self._commit("chats", persist=persist)
        return message

    def replace_message(self, chat_id: str, message: Message, persist: bool = True) -> bool:
        """Swap the message with the same id in place. False if it is gone."""
        chat = self._chats.get(chat_id)
        if chat is None:
            return False
        index = _message_index(chat, message.id)
        if index is None:
            return False
        chat.messages[index] = message
        self._commit("chats", persist=persist)
        return True

    def remove_message(self, chat_id: str, message_id: str, persist: bool = True) -> bool:
        chat = self._chats.get(chat_id)
        if chat is None:
            return False
        index = _message_index(chat, message_id)
        if index is None:
            return False
        chat.messages.pop(index)
        self._commit("chats", persist=persist)
        return True

    def find_message(self, chat_id: str, message_id: str) -> Message | None:
        chat = self._chats.get(chat_id)
        if chat is None:
            return None
        index = _message_index(chat, message_id)
        return None if index is None else chat.messages[index]

    def touch_chat(self, chat_id: str) -> None:
        chat = self._chat_or_raise(chat_id)
        chat.last_updated = now_ms()
        self._commit("chats")

    def sender_label(self, message: Message) -> str:
        """Display name for a message sender, even if the character is gone."""
        if message.sender_id == USER_SENDER:
            return USER_LABEL
        char = self._characters.get(message.sender_id)
        if char is not None:
            return char.name
        if message.sender_id == "system":
            return message.sender_name
        return REMOVED_PARTICIPANT

    # ------------------------------------------------------------------
    # Gallery
    # ------------------------------------------------------------------

    def list_gallery(self) -> list[GalleryItem]:
        return list(reversed(self._gallery.values()))

    async def add_to_gallery(
        self, url: str, type: GalleryType, caption: str | None = None
    ) -> GalleryItem:
        """Save a picture or clip. Image data URIs are shrunk to 800px first."""
        self._require_loaded()
        if type in ("image", "background") and url.startswith("data:image"):
            url = await self.shrink(url, GALLERY_MAX_PX)
        item = GalleryItem(type=type, url=url, caption=caption)
        self._gallery[item.id] = item
        self._commit("gallery")
        return item

    def delete_from_gallery(self, item_id: str) -> bool:
        self._require_loaded()
        if self._gallery.pop(item_id, None) is None:
            return False
        self._commit("gallery")
        return True


def _message_index(chat: ChatSession, message_id: str) -> int | None:
    # placeholders live at the tail, so scan backwards
    for i in range(len(chat.messages) - 1, -1, -1):
        if chat.messages[i].id == message_id:
            return i
    return None


def _dump_chat(chat: ChatSession) -> dict:
    data = chat.model_dump(mode="json")
    data["messages"] = [m for m in data["messages"] if not m.get("is_loading")]
    return data
