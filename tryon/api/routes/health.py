from fastapi import APIRouter, Request, Response


router = APIRouter()


@router.get("/health")
async def health() -> dict:
    """Liveness probe - always returns 200 if app is running."""
    return {"status": "ok"}


@router.get("/ready")
async def readiness(request: Request, response: Response) -> dict:
    """Readiness probe - returns 503 if no upstream credential is currently active."""
    service = getattr(request.app.state, "try_on_service", None)
    if service is None:
        response.status_code = 503
        return {"status": "not_ready", "error": "service not initialized"}
    stats = service.pool.stats()
    if stats.active_count == 0:
        response.status_code = 503
        return {"status": "not_ready", "error": "all credentials quarantined"}
    return {"status": "ready"}
