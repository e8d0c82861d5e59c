import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .config import Settings, get_settings
from .logging_config import configure_logging
from .session_routes import get_session_manager, router as session_router, shutdown_session_manager


configure_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_: FastAPI) -> AsyncIterator[None]:
    # Resumes a starter installation deferred before the host reloaded.
    await get_session_manager().activate()
    try:
        yield
    finally:
        await shutdown_session_manager()


app = FastAPI(title="CodeCoach Session Engine", version="0.1.0", lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)
app.include_router(session_router)

settings_snapshot = get_settings()
logger.info("Session store: %s", settings_snapshot.sessions_api_url)
logger.info("Profile backend: %s", settings_snapshot.profile_backend)
logger.info("OpenAI API key configured: %s", bool(settings_snapshot.openai_api_key))


@app.get("/healthz")
def health(settings: Settings = Depends(get_settings)) -> Dict[str, str]:
    return {"status": "ok", "model": settings.model}
