"""JSON mirror tier tests."""

import pytest

from persona_chat.storage import CeilingExceeded, MirrorStore, mirror_filename, slugify


def test_slugify_keeps_underscores():
    assert slugify("ai_rpg_chats") == "ai_rpg_chats"


def test_slugify_unsafe_characters():
    assert slugify("My Key!") == "my-key"
    assert slugify("../../etc") == "etc"
    assert slugify("") == "untitled"


def test_round_trip(tmp_path):
    mirror = MirrorStore(tmp_path / "mirror")
    mirror.set("k", {"a": 1})
    assert mirror.get("k") == {"a": 1}


def test_missing_key(tmp_path):
    assert MirrorStore(tmp_path / "mirror").get("k") is None


def test_ceiling(tmp_path):
    mirror = MirrorStore(tmp_path / "mirror", ceiling=10)
    with pytest.raises(CeilingExceeded):
        mirror.set("k", "x" * 20)
    assert mirror.get("k") is None


def test_delete_is_idempotent(tmp_path):
    mirror = MirrorStore(tmp_path / "mirror")
    mirror.set("k", 1)
    mirror.delete("k")
    mirror.delete("k")
    assert mirror.get("k") is None


def test_plain_keys_keep_their_name():
    assert mirror_filename("ai_rpg_chats") == "ai_rpg_chats.json"


def test_keys_with_the_same_slug_get_distinct_files(tmp_path):
    keys = ["a b", "A-B", "a-b", "a_b"]
    assert len({mirror_filename(k) for k in keys}) == len(keys)

    mirror = MirrorStore(tmp_path / "mirror")
    for i, key in enumerate(keys):
        mirror.set(key, i)
    assert [mirror.get(k) for k in keys] == [0, 1, 2, 3]

    mirror.delete("A-B")
    assert [mirror.get(k) for k in keys] == [0, None, 2, 3]
