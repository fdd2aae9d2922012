"""E•AI Studio API."""

import os

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from eai_studio import __version__
from eai_studio.app.routers import health, scenes
from eai_studio.exceptions import StudioError
from eai_studio.logging_config import configure_from_env
from eai_studio.scenes.orchestrate import describe_error

logger = configure_from_env()

app = FastAPI(
    title="E•AI Studio API",
    description="Photorealistic car scenes (exterior and interior) generated with Gemini",
    version=__version__
)

# CORS middleware for local development
app.add_middleware(
    CORSMiddleware,
    allow_origins=os.environ.get("EAI_CORS_ORIGINS", "http://localhost:5173").split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Register routers
app.include_router(health.router)
app.include_router(scenes.router)


@app.exception_handler(StudioError)
async def studio_error_handler(request: Request, exc: StudioError):
    """Map studio errors to a single user-facing message."""
    status_code = scenes.status_for(exc)
    if status_code >= 500:
        logger.error(f"{request.url.path} failed: {exc}")
    else:
        logger.info(f"{request.url.path} rejected: {exc}")
    body = {"success": False, "error": describe_error(exc), "type": type(exc).__name__}
    fields = getattr(exc, "fields", None)
    if fields:
        body["fields"] = fields
    return JSONResponse(status_code=status_code, content=body)
