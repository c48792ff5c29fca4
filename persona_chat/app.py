from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.staticfiles import StaticFiles

from persona_chat.config import Settings, load_settings
from persona_chat.llm import Provider, create_provider
from persona_chat.pipeline import EvolutionUpdater, MediaJob, SpeechService
from persona_chat.routes import router
from persona_chat.state import SessionStateStore
from persona_chat.storage import PersistenceStore


def create_app(settings: Settings | None = None, provider: Provider | None = None) -> FastAPI:
    settings = settings or load_settings()
    provider = provider or create_provider(settings)
    media_dir = settings.data_dir / "media"

    persistence = PersistenceStore.at(settings.data_dir, settings.mirror_ceiling)
    store = SessionStateStore(persistence)
    evolution = EvolutionUpdater(store, provider)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        media_dir.mkdir(parents=True, exist_ok=True)
        # nothing is served until the collections are in memory
        await store.load()
        yield
        await evolution.drain()
        await store.flush()
        await persistence.close()

    app = FastAPI(title="Persona Chat", lifespan=lifespan)
    app.state.settings = settings
    app.state.store = store
    app.state.provider = provider
    app.state.evolution = evolution
    app.state.media = MediaJob(
        store,
        provider,
        poll_interval=settings.video_poll_interval,
        max_polls=settings.video_max_polls,
    )
    app.state.speech = SpeechService(store, provider)

    app.include_router(router, prefix="/api")
    # finished videos are downloaded here and referenced as /media/<file>
    app.mount("/media", StaticFiles(directory=media_dir, check_dir=False), name="media")
    return app


# Default app instance for uvicorn (settings from the environment / .env)
app = create_app()
