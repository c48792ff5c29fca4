"""Durable key/value storage in two tiers.

Data layout:
  data/
    persona_chat.db      SQLite primary (table keyval, PRAGMA user_version = schema)
    mirror/              Size-bounded JSON copies, one file per key
      <key>.json         (non-plain keys: <slug>-<hash>.json)

Keys used by the session store:
  ai_rpg_chars         list of Character dicts
  ai_rpg_chats         list of ChatSession dicts
  ai_rpg_gallery       list of GalleryItem dicts
"""

# Re-export the public symbols so `from persona_chat.storage import ...` stays flat.

from .core import PersistenceStore  # noqa: F401

from .mirror import (  # noqa: F401
    DEFAULT_CEILING,
    CeilingExceeded,
    MirrorStore,
    mirror_filename,
    slugify,
)

from .primary import (  # noqa: F401
    SCHEMA_VERSION,
    PrimaryHandle,
    PrimaryUnavailable,
    open_sqlite,
)
