from pathlib import Path

import pytest

from persona_chat.config import Settings
from persona_chat.state import SessionStateStore
from persona_chat.storage import PersistenceStore


@pytest.fixture
def data_dir(tmp_path: Path) -> Path:
    """Fresh, empty data directory for every test."""
    path = tmp_path / "data-tests"
    path.mkdir()
    return path


@pytest.fixture
def settings(data_dir: Path) -> Settings:
    return Settings(data_dir=data_dir, provider_url="echo", video_poll_interval=0)


@pytest.fixture
async def persistence(data_dir: Path):
    store = PersistenceStore.at(data_dir)
    yield store
    await store.close()


@pytest.fixture
async def store(persistence: PersistenceStore):
    """A loaded, empty session store backed by the test data directory."""
    state = SessionStateStore(persistence)
    await state.load()
    yield state
    await state.flush()
