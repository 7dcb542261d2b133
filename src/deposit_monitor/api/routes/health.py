"""Health check endpoints."""

from fastapi import APIRouter, Request

router = APIRouter()


@router.get("/health")
async def health_check():
    """Basic health check endpoint."""
    return {"status": "healthy", "service": "deposit-monitor"}


@router.get("/health/detailed")
async def detailed_health(request: Request):
    """Detailed health check with configuration info."""
    dispatcher = request.app.state.dispatcher
    return {
        "status": "healthy",
        "service": "deposit-monitor",
        "version": "0.1.0",
        "monitoring": dispatcher.monitoring,
        "config": request.app.state.settings.get_safe_dict(),
    }
