"""Health check endpoints."""

from fastapi import APIRouter, Request

router = APIRouter()


@router.get("/health")
async def health_check():
    """Basic health check endpoint."""
    return {"status": "healthy", "service": "rpcshield"}


@router.get("/health/detailed")
async def detailed_health(request: Request):
    """Detailed health check with configuration info."""
    settings = request.app.state.settings
    gateway = request.app.state.rpc_gateway
    return {
        "status": "healthy" if gateway.forwarder.is_configured else "degraded",
        "service": "rpcshield",
        "version": "0.1.0",
        "config": settings.get_safe_dict(),
    }
