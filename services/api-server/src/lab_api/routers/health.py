"""Simple health check endpoint for liveness probes."""

from fastapi import APIRouter, Request

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check(request: Request) -> dict:
    launcher = getattr(request.app.state, "launcher", None)
    return {
        "status": "ok",
        "service": "api-server",
        "launcher": launcher.mode if launcher is not None else None,
    }
