from fastapi import APIRouter, Depends

from gallery_media.config import Settings
from gallery_media.routes.deps import get_settings

router = APIRouter(tags=["health"])


@router.get("/health")
async def health(app_settings: Settings = Depends(get_settings)) -> dict[str, str]:
    return {
        "status": "ok",
        "storage_backend": app_settings.storage_backend,
        "transform_mode": app_settings.transform_mode,
    }
