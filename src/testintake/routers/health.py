"""Health check endpoint."""

from fastapi import APIRouter, Request

from testintake import __version__

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check(request: Request) -> dict:
    """Return API health status, version and the configured bucket."""
    storage = getattr(request.app.state, "storage", None)
    return {
        "status": "ok",
        "version": __version__,
        "storage": {"bucket": storage.bucket if storage else None},
    }
