"""FastAPI entrypoint for the structured-generation service."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict

from fastapi import FastAPI, Request
from prometheus_fastapi_instrumentator import Instrumentator

from .model import get_model, initialize_model
from .notifier import SlackNotifier
from .pipeline import Pipeline
from .schemas import PipelineResponse, ProcessRequest
from .settings import get_settings

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    handle = None
    if settings.gemini_api_key:
        initialize_model(settings.gemini_api_key, settings)
        handle = get_model()
    app.state.pipeline = Pipeline(handle=handle, notifier=SlackNotifier(settings), settings=settings)
    yield
    await app.state.pipeline.aclose()


app = FastAPI(title=settings.app_name, lifespan=lifespan)
Instrumentator().instrument(app).expose(app)


@app.post("/v1/process", response_model=PipelineResponse)
async def process(body: ProcessRequest, request: Request) -> PipelineResponse:
    pipeline: Pipeline = request.app.state.pipeline
    return await pipeline.process(body, settings.gemini_api_key)


@app.get("/health")
async def health() -> Dict[str, str]:
    return {"status": "ok"}
