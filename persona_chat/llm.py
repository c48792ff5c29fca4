"""Provider client: text, image, video, speech and memory capabilities.

The pipeline depends only on the Provider protocol below. Each capability
has a fixed failure contract:

    generate_turn        async iterator of cumulative snapshots;
                         raises QuotaExceeded / GenerationFailure
    summarize_scene      never raises, degrades to a generic sentence
    generate_image       raises GenerationFailure (QuotaExceeded included)
    generate_background  never raises, "" on failure
    submit_video         raises GenerationFailure / CredentialSelectionRequired
    poll_video           same as submit_video
    synthesize_speech    never raises, None on failure
    revise_memory        never raises, returns the input memory on failure

Two implementations are provided:

    HttpProvider   OpenAI-compatible HTTP API over httpx.
    EchoProvider   echoes the chat back, no network. Useful for smoke-testing
                   the turn wiring without a provider.

Production code builds one with create_provider(settings). Tests use stub
providers defined next to the tests.
"""

from __future__ import annotations

import base64
import json
import logging
import re
from collections.abc import AsyncIterator
from pathlib import Path
from typing import Protocol

import httpx
from pydantic import BaseModel, Field

from persona_chat import prompts
from persona_chat.config import Settings

logger = logging.getLogger(__name__)

QUOTA_MESSAGE = (
    "Rate limit reached (quota exceeded). "
    "Please wait a minute before sending another message."
)
FALLBACK_SCENE = "A cinematic scene"
EMPTY_SCENE = "A mysterious place"

_DATA_URI = re.compile(r"^data:(.+?);base64,(.+)$", re.DOTALL)
_REFERENCE_MIME_TYPES = {"image/png", "image/jpeg", "image/webp", "image/heic", "image/heif"}


# ---------------------------------------------------------------------------
# Request / response types
# ---------------------------------------------------------------------------

class TurnRequest(BaseModel):
    """Everything one participant needs to produce its reply."""

    name: str
    persona: str
    bio: str | None = None
    memory: str | None = None
    context: list[tuple[str, str]] = Field(default_factory=list)  # (sender, text)
    co_participants: list[str] = Field(default_factory=list)
    nsfw: bool = False
    image: str | None = None


class VideoStatus(BaseModel):
    done: bool
    url: str | None = None


# ---------------------------------------------------------------------------
# Protocol: every provider implementation must match these signatures
# ---------------------------------------------------------------------------

class Provider(Protocol):
    def generate_turn(self, request: TurnRequest) -> AsyncIterator[str]: ...

    async def summarize_scene(
        self, messages: list[tuple[str, str]], descriptions: list[str]
    ) -> str: ...

    async def generate_image(self, prompt: str, references: list[str]) -> str: ...

    async def generate_background(self, summary: str, references: list[str]) -> str: ...

    async def submit_video(self, prompt: str) -> str: ...

    async def poll_video(self, job: str) -> VideoStatus: ...

    async def synthesize_speech(self, text: str, voice: str, speed: float = 1.0) -> bytes | None: ...

    async def revise_memory(
        self, name: str, persona: str, memory: str | None, recent: list[tuple[str, str]]
    ) -> str: ...


def create_provider(settings: Settings) -> Provider:
    """Provider for the configured URL. "echo" selects the offline EchoProvider."""
    if settings.provider_url == "echo":
        return EchoProvider()
    return HttpProvider(
        provider_url=settings.provider_url,
        api_key=settings.api_key,
        chat_model=settings.chat_model,
        summary_model=settings.summary_model,
        image_model=settings.image_model,
        video_model=settings.video_model,
        speech_model=settings.speech_model,
        timeout=settings.llm_timeout,
        media_dir=settings.data_dir / "media",
    )


# ---------------------------------------------------------------------------
# HttpProvider: OpenAI-compatible backend
# ---------------------------------------------------------------------------

class HttpProvider:
    """Async HTTP client for an OpenAI-compatible API.

    Endpoints:
      POST /v1/chat/completions     turns (SSE stream), summaries, memory
      POST /v1/images/generations   images without references
      POST /v1/images/edits         images guided by reference pictures
      POST /v1/videos               submit a video job
      GET  /v1/videos/{id}          poll a video job
      GET  /v1/videos/{id}/content  download the finished video into media_dir
      POST /v1/audio/speech         text to speech

    Args:
        provider_url: Base URL of the backend, e.g. "https://api.openai.com".
        api_key:      Bearer token, or empty string if not required.
        timeout:      HTTP timeout in seconds. Defaults to 120.
        media_dir:    Where finished videos are written; references returned
                      are "/media/<file>".
        transport:    Optional httpx transport (tests pass a MockTransport).
    """

    def __init__(
        self,
        provider_url: str,
        api_key: str = "",
        chat_model: str = "gpt-4o-mini",
        summary_model: str = "gpt-4o-mini",
        image_model: str = "gpt-image-1",
        video_model: str = "sora-2",
        speech_model: str = "gpt-4o-mini-tts",
        timeout: float = 120.0,
        media_dir: Path | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = provider_url.rstrip("/")
        self._api_key = api_key
        self._chat_model = chat_model
        self._summary_model = summary_model
        self._image_model = image_model
        self._video_model = video_model
        self._speech_model = speech_model
        self._timeout = timeout
        self._media_dir = media_dir or Path("media")
        self._transport = transport

    def _headers(self) -> dict[str, str]:
        headers: dict[str, str] = {}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self._timeout, transport=self._transport)

    def _status_error(self, status: int, video: bool) -> LLMError:
        if status == 429:
            return QuotaExceeded()
        if status == 404 and video:
            return CredentialSelectionRequired("Video endpoint not found for this API key")
        return GenerationFailure(f"Provider returned HTTP {status}")

    async def _request(self, method: str, path: str, *, video: bool = False, **kwargs) -> httpx.Response:
        url = f"{self._base_url}{path}"
        logger.debug("provider call %s %s", method, url)
        try:
            async with self._client() as client:
                resp = await client.request(method, url, headers=self._headers(), **kwargs)
                resp.raise_for_status()
        except httpx.ConnectError as e:
            raise GenerationFailure(f"Cannot connect to provider at {self._base_url}") from e
        except httpx.HTTPStatusError as e:
            raise self._status_error(e.response.status_code, video) from e
        except httpx.TimeoutException as e:
            raise GenerationFailure(f"Provider timed out after {self._timeout}s") from e
        except httpx.HTTPError as e:
            raise GenerationFailure(f"Provider request failed: {e}") from e
        return resp

    async def _complete(self, model: str, prompt: str, max_tokens: int | None = None) -> str:
        body: dict = {"model": model, "messages": [{"role": "user", "content": prompt}]}
        if max_tokens:
            body["max_tokens"] = max_tokens
        data = (await self._request("POST", "/v1/chat/completions", json=body)).json()
        try:
            return data["choices"][0]["message"]["content"] or ""
        except (KeyError, IndexError, TypeError) as e:
            raise GenerationFailure("Unexpected response format from chat completions") from e

    # -- turns --------------------------------------------------------------

    async def generate_turn(self, request: TurnRequest) -> AsyncIterator[str]:
        if not request.context:
            return
        system, user = prompts.turn_messages(
            request.name, request.persona, request.bio, request.memory,
            request.context, request.co_participants, request.nsfw,
        )
        content: str | list[dict] = user
        if request.image:
            content = [
                {"type": "text", "text": user},
                {"type": "image_url", "image_url": {"url": request.image}},
            ]
        body = {
            "model": self._chat_model,
            "stream": True,
            "temperature": 1.1,
            "messages": [
                {"role": "system", "content": system},
                {"role": "user", "content": content},
            ],
        }
        url = f"{self._base_url}/v1/chat/completions"
        logger.debug("turn stream name=%s context_len=%d", request.name, len(request.context))

        text = ""
        try:
            async with self._client() as client:
                async with client.stream("POST", url, json=body, headers=self._headers()) as resp:
                    resp.raise_for_status()
                    async for line in resp.aiter_lines():
                        delta = _parse_sse_delta(line)
                        if delta:
                            text += delta
                            yield text
        except httpx.ConnectError as e:
            raise GenerationFailure(f"Cannot connect to provider at {self._base_url}") from e
        except httpx.HTTPStatusError as e:
            raise self._status_error(e.response.status_code, video=False) from e
        except httpx.TimeoutException as e:
            raise GenerationFailure(f"Provider timed out after {self._timeout}s") from e
        except (httpx.HTTPError, httpx.StreamError) as e:
            raise GenerationFailure(f"Stream interrupted: {e}") from e
        logger.debug("turn stream done name=%s len=%d", request.name, len(text))

    # -- scene / memory -----------------------------------------------------

    async def summarize_scene(
        self, messages: list[tuple[str, str]], descriptions: list[str]
    ) -> str:
        if not messages:
            return EMPTY_SCENE
        try:
            text = await self._complete(
                self._summary_model, prompts.scene_summary_prompt(messages, descriptions)
            )
        except (LLMError, ValueError) as e:
            logger.warning("scene summary failed, using fallback: %s", e)
            return FALLBACK_SCENE
        return text.strip() or f"{FALLBACK_SCENE} with characters"

    async def revise_memory(
        self, name: str, persona: str, memory: str | None, recent: list[tuple[str, str]]
    ) -> str:
        current = memory or ""
        if not recent:
            return current
        try:
            text = await self._complete(
                self._summary_model,
                prompts.evolution_prompt(name, persona, memory, recent[-10:]),
                max_tokens=200,
            )
        except (LLMError, ValueError) as e:
            logger.warning("memory revision failed for %s: %s", name, e)
            return current
        return text.strip() or current

    # -- images -------------------------------------------------------------

    async def _image(self, prompt: str, references: list[str], size: str) -> str:
        refs = _reference_files(references)
        if refs:
            resp = await self._request(
                "POST", "/v1/images/edits",
                data={"model": self._image_model, "prompt": prompt, "size": size},
                files=[("image[]", ref) for ref in refs],
            )
        else:
            resp = await self._request(
                "POST", "/v1/images/generations",
                json={"model": self._image_model, "prompt": prompt, "size": size, "n": 1},
            )
        try:
            items = resp.json().get("data") or []
        except ValueError as e:
            raise GenerationFailure("Unexpected response format from image endpoint") from e
        if items and items[0].get("b64_json"):
            return f"data:image/png;base64,{items[0]['b64_json']}"
        if items and items[0].get("url"):
            return items[0]["url"]
        raise GenerationFailure("No image data returned")

    async def generate_image(self, prompt: str, references: list[str]) -> str:
        return await self._image(
            prompts.image_prompt(prompt, bool(references)), references, "1024x1024"
        )

    async def generate_background(self, summary: str, references: list[str]) -> str:
        try:
            return await self._image(prompts.background_prompt(summary), references, "1536x1024")
        except (LLMError, ValueError) as e:
            logger.warning("background generation failed: %s", e)
            return ""

    # -- video --------------------------------------------------------------

    async def submit_video(self, prompt: str) -> str:
        resp = await self._request(
            "POST", "/v1/videos", video=True,
            json={"model": self._video_model, "prompt": prompts.video_prompt(prompt), "size": "1280x720"},
        )
        job = resp.json().get("id")
        if not job:
            raise GenerationFailure("Video submit returned no job id")
        return job

    async def poll_video(self, job: str) -> VideoStatus:
        data = (await self._request("GET", f"/v1/videos/{job}", video=True)).json()
        status = data.get("status")
        if status == "failed":
            reason = (data.get("error") or {}).get("message", "unknown error")
            raise GenerationFailure(f"Video job {job} failed: {reason}")
        if status != "completed":
            return VideoStatus(done=False)
        content = await self._request("GET", f"/v1/videos/{job}/content", video=True)
        if not content.content:
            raise GenerationFailure("No video data returned")
        self._media_dir.mkdir(parents=True, exist_ok=True)
        (self._media_dir / f"{job}.mp4").write_bytes(content.content)
        return VideoStatus(done=True, url=f"/media/{job}.mp4")

    # -- speech -------------------------------------------------------------

    async def synthesize_speech(self, text: str, voice: str, speed: float = 1.0) -> bytes | None:
        if not text.strip():
            return None
        try:
            resp = await self._request(
                "POST", "/v1/audio/speech",
                json={
                    "model": self._speech_model,
                    "input": text,
                    "voice": voice,
                    "speed": speed,
                    "response_format": "mp3",
                },
            )
        except LLMError as e:
            logger.error("speech synthesis failed: %s", e)
            return None
        return resp.content or None


def _parse_sse_delta(line: str) -> str | None:
    """Extract the content delta from one `data: {...}` SSE line."""
    if not line.startswith("data:"):
        return None
    payload = line[len("data:"):].strip()
    if not payload or payload == "[DONE]":
        return None
    try:
        data = json.loads(payload)
    except json.JSONDecodeError:
        logger.debug("skipping malformed stream line: %r", line)
        return None
    choices = data.get("choices") or []
    if not choices:
        return None
    return (choices[0].get("delta") or {}).get("content")


def _reference_files(references: list[str]) -> list[tuple[str, bytes, str]]:
    """Turn supported data-URI references into multipart file tuples."""

    files = []
    for i, ref in enumerate(references):
        match = _DATA_URI.match(ref or "")
        if not match or match.group(1) not in _REFERENCE_MIME_TYPES:
            continue
        ext = match.group(1).split("/")[1]
        files.append((f"reference-{i}.{ext}", base64.b64decode(match.group(2)), match.group(1)))
    return files


# ---------------------------------------------------------------------------
# EchoProvider: no network; useful for wiring smoke tests
# ---------------------------------------------------------------------------

class EchoProvider:
    """Repeats the last chat line back, one word per snapshot. No network calls.

    Lets you verify the turn loop, persistence and API end-to-end without a
    running model. Media capabilities return fixed placeholder references.
    """

    async def generate_turn(self, request: TurnRequest) -> AsyncIterator[str]:
        if not request.context:
            return
        words = request.context[-1][1].split()
        logger.debug("EchoProvider turn name=%s words=%d", request.name, len(words))
        for i in range(1, len(words) + 1):
            yield " ".join(words[:i])

    async def summarize_scene(
        self, messages: list[tuple[str, str]], descriptions: list[str]
    ) -> str:
        return FALLBACK_SCENE if messages else EMPTY_SCENE

    async def generate_image(self, prompt: str, references: list[str]) -> str:
        return f"echo://image/{len(prompt)}"

    async def generate_background(self, summary: str, references: list[str]) -> str:
        return f"echo://background/{len(summary)}"

    async def submit_video(self, prompt: str) -> str:
        return "echo-job"

    async def poll_video(self, job: str) -> VideoStatus:
        return VideoStatus(done=True, url=f"echo://video/{job}")

    async def synthesize_speech(self, text: str, voice: str, speed: float = 1.0) -> bytes | None:
        return text.encode() if text.strip() else None

    async def revise_memory(
        self, name: str, persona: str, memory: str | None, recent: list[tuple[str, str]]
    ) -> str:
        return memory or ""


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------

class LLMError(RuntimeError):
    """Base class for provider failures."""


class GenerationFailure(LLMError):
    """The provider could not produce a result."""


class QuotaExceeded(GenerationFailure):
    """The provider is rate limiting us. Not retried automatically."""

    def __init__(self, message: str = QUOTA_MESSAGE) -> None:
        super().__init__(message)


class CredentialSelectionRequired(LLMError):
    """The current credentials cannot reach the endpoint; re-select and retry once."""
