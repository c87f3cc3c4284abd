from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile
from loguru import logger

from gallery_media.config import Settings
from gallery_media.models.upload import SourceAsset
from gallery_media.routes.deps import get_settings, get_storage
from gallery_media.services.errors import ValidationError
from gallery_media.services.storage import ObjectStorage, save_upload

router = APIRouter(prefix="/upload", tags=["upload"])


@router.post("", response_model=SourceAsset, status_code=201)
async def upload_original(
    file: UploadFile = File(...),
    owner_id: str = Form(...),
    storage: ObjectStorage = Depends(get_storage),
    app_settings: Settings = Depends(get_settings),
) -> SourceAsset:
    logger.info("Upload request owner_id={} filename={}", owner_id, file.filename)
    try:
        saved = await save_upload(file, owner_id, storage, app_settings)
    except ValidationError as exc:
        logger.warning(
            "Upload rejected filename={} content_type={} error={}",
            file.filename,
            file.content_type,
            str(exc),
        )
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    logger.info(
        "Upload stored storage_key={} mime_type={} width={} height={} size_bytes={}",
        saved.storage_key,
        saved.mime_type,
        saved.width,
        saved.height,
        saved.size_bytes,
    )
    return saved
