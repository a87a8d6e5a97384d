"""
photoquest.api.main — FastAPI application entry point
======================================================

Run with::

    uvicorn photoquest.api.main:app --reload --port 8000
"""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.staticfiles import StaticFiles

load_dotenv()

from photoquest.api.deps import get_cache, get_classifier, get_engine, get_state_machine, get_store  # noqa: E402
from photoquest.api.routes.moderation import router as moderation_router  # noqa: E402
from photoquest.api.routes.progress import router as progress_router  # noqa: E402
from photoquest.api.routes.quests import router as quests_router  # noqa: E402
from photoquest.errors import ErrorKind, QuestError  # noqa: E402

logger = logging.getLogger(__name__)

STATUS_BY_KIND: dict[ErrorKind, int] = {
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.INELIGIBLE: 403,
    ErrorKind.OUT_OF_RANGE: 422,
    ErrorKind.ALREADY_SETTLED: 409,
    ErrorKind.MODERATION_UNAVAILABLE: 503,
    ErrorKind.CONTENT_REJECTED: 422,
    ErrorKind.STORAGE_FAILURE: 502,
    ErrorKind.PERSISTENCE_CONFLICT: 409,
}

_unmapped = set(ErrorKind) - set(STATUS_BY_KIND)
if _unmapped:
    raise RuntimeError(f"No HTTP status for error kind(s): {sorted(_unmapped)}")


def _cors_origins() -> list[str]:
    """Allowed CORS origins from ``CORS_ALLOW_ORIGINS`` (comma-separated)."""
    raw = os.getenv("CORS_ALLOW_ORIGINS", "").strip()
    if raw:
        return [origin.strip().rstrip("/") for origin in raw.split(",") if origin.strip()]
    return []


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup/shutdown lifecycle — warm the engine and settings cache."""
    engine = get_engine()
    get_cache()
    store = get_store()
    # Serve artifacts ourselves only when they live under a local path
    if store.base_url.startswith("/"):
        store.root.mkdir(parents=True, exist_ok=True)
        app.mount(store.base_url, StaticFiles(directory=str(store.root)), name="artifacts")
    logger.info("PhotoQuest API started — engine ready (%s)", engine.url.database)
    yield
    await get_state_machine().aclose()
    classifier = get_classifier()
    if classifier is not None:
        await classifier.aclose()
    logger.info("PhotoQuest API shutting down")


app = FastAPI(
    title="PhotoQuest API",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(QuestError)
async def quest_error_handler(request: Request, exc: QuestError) -> JSONResponse:
    status_code = STATUS_BY_KIND[exc.kind]
    if status_code >= 500:
        logger.error("%s on %s: %s", exc.kind, request.url.path, exc.message)
    return JSONResponse(status_code=status_code, content=exc.to_dict())


app.include_router(quests_router, prefix="/api")
app.include_router(progress_router, prefix="/api")
app.include_router(moderation_router, prefix="/api")


@app.get("/api/health")
def health():
    return {"status": "ok"}
