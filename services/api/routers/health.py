"""Health check endpoint."""

from fastapi import APIRouter, Request

router = APIRouter()


@router.get("/health")
async def health_check(request: Request) -> dict:
    return {
        "success": True,
        "data": {
            "status": "healthy",
            "service": request.app.state.settings.app_name,
            "version": request.app.state.settings.app_version,
            "database": getattr(request.app.state, "db_session_factory", None) is not None,
            "redis": getattr(request.app.state, "redis", None) is not None,
        },
        "requestId": request.state.request_id,
    }
