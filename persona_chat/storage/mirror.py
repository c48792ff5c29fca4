"""Secondary storage tier: size-bounded JSON file mirror.

One file per key under the mirror directory:

    {data_dir}/mirror/
      ai_rpg_chars.json
      ai_rpg_chats.json
      ai_rpg_gallery.json

Keys made only of lowercase letters, digits and underscores are used as the
file stem directly. Any other key gets its slug plus a short hash of the raw
key, so two keys never share a file ("a b" → a-b-3f1c....json).

Values whose serialised form reaches the ceiling are refused with
CeilingExceeded; the mirror is a resilience copy, not a second primary.
"""

import hashlib
import json
import re
import unicodedata
from pathlib import Path
from typing import Any

DEFAULT_CEILING = 5_000_000  # characters of serialised JSON

_PLAIN_KEY = re.compile(r"[a-z0-9_]+")


class CeilingExceeded(ValueError):
    """Raised when a value is too large for the mirror."""


def slugify(key: str) -> str:
    """Convert a storage key to a filesystem-safe file stem.

    "ai_rpg_chats" → "ai_rpg_chats", "My Key!" → "my-key"
    """
    text = unicodedata.normalize("NFKD", key)
    text = text.encode("ascii", "ignore").decode("ascii")
    text = text.lower()
    text = re.sub(r"[^a-z0-9_]+", "-", text)
    text = text.strip("-")
    return text or "untitled"


def mirror_filename(key: str) -> str:
    """File name for a key. Distinct keys always get distinct names."""
    if _PLAIN_KEY.fullmatch(key):
        return f"{key}.json"
    digest = hashlib.sha256(key.encode("utf-8")).hexdigest()[:12]
    return f"{slugify(key)}-{digest}.json"


class MirrorStore:
    def __init__(self, root: Path, ceiling: int = DEFAULT_CEILING) -> None:
        self._root = root
        self.ceiling = ceiling

    def _path(self, key: str) -> Path:
        return self._root / mirror_filename(key)

    def get(self, key: str) -> Any | None:
        """Load a value. Returns None if the key was never mirrored."""
        path = self._path(key)
        if not path.is_file():
            return None
        return json.loads(path.read_text())

    def set(self, key: str, value: Any) -> None:
        text = json.dumps(value)
        if len(text) >= self.ceiling:
            raise CeilingExceeded(f"{key}: {len(text)} chars exceeds mirror ceiling {self.ceiling}")
        self._root.mkdir(parents=True, exist_ok=True)
        self._path(key).write_text(text)

    def delete(self, key: str) -> None:
        self._path(key).unlink(missing_ok=True)
