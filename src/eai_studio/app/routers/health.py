"""Health and status endpoints."""

from fastapi import APIRouter

from eai_studio import __version__

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "service": "eai-studio-api"}


@router.get("/")
async def root():
    """Root endpoint."""
    return {
        "message": "E•AI Studio API",
        "version": __version__,
        "docs": "/docs",
        "health": "/health"
    }
