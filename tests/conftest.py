"""Shared test helpers: a deterministic provider and character factories."""

from collections.abc import AsyncIterator

import pytest

from persona_chat.llm import TurnRequest, VideoStatus
from persona_chat.models import Character
from persona_chat.pipeline import EvolutionUpdater
from persona_chat.state import SessionStateStore


class StubProvider:
    """Deterministic provider stand-in for tests.

    turns maps a character name to the snapshots its stream yields. An
    exception instance, either as the whole script or as one of the items,
    is raised at that point of the stream. Every call is recorded in
    `calls` as (capability, *args).
    """

    def __init__(
        self,
        turns: dict | None = None,
        summary: str = "A quiet tavern at dusk",
        image: str | Exception = "https://img.example/scene.png",
        background: str = "https://img.example/background.png",
        video_statuses: list | None = None,
        submit_errors: list[Exception] | None = None,
        memory: str | Exception | None = None,
        speech: bytes | None = b"ID3-audio",
    ) -> None:
        self.turns = dict(turns or {})
        self.summary = summary
        self.image = image
        self.background = background
        self.video_statuses = list(video_statuses or [])
        self.submit_errors = list(submit_errors or [])
        self.memory = memory
        self.speech = speech
        self.requests: list[TurnRequest] = []
        self.calls: list[tuple] = []
        self.polls = 0

    def called(self, capability: str) -> list[tuple]:
        return [c for c in self.calls if c[0] == capability]

    async def generate_turn(self, request: TurnRequest) -> AsyncIterator[str]:
        self.requests.append(request)
        script = self.turns.get(request.name, [])
        if isinstance(script, Exception):
            raise script
        for item in script:
            if isinstance(item, Exception):
                raise item
            yield item

    async def summarize_scene(self, messages, descriptions) -> str:
        self.calls.append(("summarize_scene", list(messages), list(descriptions)))
        return self.summary

    async def generate_image(self, prompt: str, references: list[str]) -> str:
        self.calls.append(("generate_image", prompt, list(references)))
        if isinstance(self.image, Exception):
            raise self.image
        return self.image

    async def generate_background(self, summary: str, references: list[str]) -> str:
        self.calls.append(("generate_background", summary, list(references)))
        return self.background

    async def submit_video(self, prompt: str) -> str:
        self.calls.append(("submit_video", prompt))
        if self.submit_errors:
            raise self.submit_errors.pop(0)
        return f"job-{len(self.called('submit_video'))}"

    async def poll_video(self, job: str) -> VideoStatus:
        self.polls += 1
        self.calls.append(("poll_video", job))
        if not self.video_statuses:
            return VideoStatus(done=True, url=f"/media/{job}.mp4")
        status = self.video_statuses.pop(0)
        if isinstance(status, Exception):
            raise status
        return status

    async def synthesize_speech(self, text: str, voice: str, speed: float = 1.0) -> bytes | None:
        self.calls.append(("synthesize_speech", text, voice, speed))
        return self.speech

    async def revise_memory(self, name, persona, memory, recent) -> str:
        self.calls.append(("revise_memory", name, memory, list(recent)))
        if isinstance(self.memory, Exception):
            raise self.memory
        return self.memory if self.memory is not None else memory or ""


@pytest.fixture
def provider() -> StubProvider:
    return StubProvider()


@pytest.fixture
async def evolution(store: SessionStateStore, provider: StubProvider):
    updater = EvolutionUpdater(store, provider)
    yield updater
    await updater.drain()


@pytest.fixture
def make_character(store: SessionStateStore):
    """Factory that saves a character into the test store."""

    def make(name: str, **fields) -> Character:
        fields.setdefault("description", f"{name} is friendly and curious")
        return store.save_character(Character(name=name, **fields))

    return make
