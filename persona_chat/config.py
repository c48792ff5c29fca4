"""Runtime settings read from the environment (and `.env` at the repo root)."""

import os
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel

ROOT = Path(__file__).parent.parent
DEFAULT_DATA_DIR = ROOT / "data"


class Settings(BaseModel):
    data_dir: Path = DEFAULT_DATA_DIR
    provider_url: str = "https://api.openai.com"
    api_key: str = ""
    chat_model: str = "gpt-4o-mini"
    summary_model: str = "gpt-4o-mini"
    image_model: str = "gpt-image-1"
    video_model: str = "sora-2"
    speech_model: str = "gpt-4o-mini-tts"
    llm_timeout: float = 120.0
    video_poll_interval: float = 5.0
    video_max_polls: int | None = None  # None = poll until the provider says done
    mirror_ceiling: int = 5_000_000
    host: str = "0.0.0.0"
    port: int = 13013


_ENV_FIELDS = {
    "DATA_DIR": "data_dir",
    "PROVIDER_URL": "provider_url",
    "API_KEY": "api_key",
    "CHAT_MODEL": "chat_model",
    "SUMMARY_MODEL": "summary_model",
    "IMAGE_MODEL": "image_model",
    "VIDEO_MODEL": "video_model",
    "SPEECH_MODEL": "speech_model",
    "LLM_TIMEOUT": "llm_timeout",
    "VIDEO_POLL_INTERVAL": "video_poll_interval",
    "VIDEO_MAX_POLLS": "video_max_polls",
    "MIRROR_CEILING": "mirror_ceiling",
    "HOST": "host",
    "PORT": "port",
}


def load_settings(**overrides) -> Settings:
    """Build Settings from env vars; keyword overrides win over the environment.

    Unset or empty variables keep the model default. Pydantic does the
    str → int/float/Path coercion.
    """
    load_dotenv(ROOT / ".env")
    fields: dict = {}
    for env_name, field in _ENV_FIELDS.items():
        value = os.getenv(env_name, "")
        if value:
            fields[field] = value
    fields.update({k: v for k, v in overrides.items() if v is not None})
    return Settings.model_validate(fields)
