from fastapi import APIRouter, Depends

from restohub.api.deps import get_cache
from restohub.services.cache import RedisCache

router = APIRouter(tags=["health"])


@router.get("/live")
def live() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/ready")
def ready(cache: RedisCache = Depends(get_cache)) -> dict[str, str]:
    return {"status": "ready", "cache": "available" if cache.is_available() else "disabled"}
