from fastapi import APIRouter

router = APIRouter()


@router.get("/health")
async def health_check():
    """Liveness check (unauthenticated)."""
    return {"status": "ok", "service": "prima-messaging"}
