"""Request dependencies: the services created by create_app()."""

from fastapi import Request

from persona_chat.config import Settings
from persona_chat.llm import Provider
from persona_chat.pipeline import EvolutionUpdater, MediaJob, SpeechService
from persona_chat.state import SessionStateStore


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_store(request: Request) -> SessionStateStore:
    return request.app.state.store


def get_provider(request: Request) -> Provider:
    return request.app.state.provider


def get_evolution(request: Request) -> EvolutionUpdater:
    return request.app.state.evolution


def get_media(request: Request) -> MediaJob:
    return request.app.state.media


def get_speech(request: Request) -> SpeechService:
    return request.app.state.speech
