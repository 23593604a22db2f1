"""Entry point for the Twilio to OpenAI Realtime voice bridge."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from api.dependencies import get_registry
from api.routes import router as api_router
from api.twilio_routes import router as twilio_router
from config.settings import get_settings

LOGGER = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    LOGGER.info("Voice bridge ready (model=%s, voice=%s)", settings.openai_model, settings.openai_voice)
    yield
    await get_registry().close_all()


# Fails fast with a validation error when OPENAI_API_KEY is missing.
settings = get_settings()

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

app = FastAPI(
    title="Twilio Realtime Voice Bridge",
    description="Relays Twilio Media Streams to the OpenAI Realtime API and back.",
    lifespan=lifespan,
)
app.include_router(api_router)
app.include_router(twilio_router)


def run() -> None:
    import uvicorn

    uvicorn.run(app, host=settings.host, port=settings.port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    run()
