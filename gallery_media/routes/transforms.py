from fastapi import APIRouter, BackgroundTasks, Depends, Response
from loguru import logger

from gallery_media.config import Settings
from gallery_media.models.asset import DerivedKind
from gallery_media.models.derive import TransformRequest, TransformResponse
from gallery_media.routes.deps import get_readiness, get_settings, get_storage, verify_service_token
from gallery_media.services.errors import DerivationError
from gallery_media.services.invoker import run_transform
from gallery_media.services.readiness import ReadinessStore
from gallery_media.services.storage import ObjectStorage

router = APIRouter(prefix="/transforms", tags=["transforms"], dependencies=[Depends(verify_service_token)])


async def _run_detached(
    kind: DerivedKind,
    request: TransformRequest,
    storage: ObjectStorage,
    readiness: ReadinessStore,
    font_path: str,
) -> None:
    try:
        await run_transform(kind, request, storage, readiness, font_path=font_path)
    except DerivationError as exc:
        # No readiness flag is set, so the waiting caller sees the failure.
        logger.error(
            "Detached transform failed unit={} output_key={} error={}",
            kind.value,
            request.output_key,
            str(exc),
        )


@router.post("/{unit}", response_model=TransformResponse)
async def invoke_transform(
    unit: DerivedKind,
    request: TransformRequest,
    response: Response,
    background_tasks: BackgroundTasks,
    storage: ObjectStorage = Depends(get_storage),
    readiness: ReadinessStore = Depends(get_readiness),
    app_settings: Settings = Depends(get_settings),
) -> TransformResponse:
    logger.info(
        "Transform requested unit={} source_key={} output_key={} detached={}",
        unit.value,
        request.source_key,
        request.output_key,
        request.detached,
    )
    if request.detached:
        background_tasks.add_task(
            _run_detached, unit, request, storage, readiness, app_settings.watermark_font_path
        )
        response.status_code = 202
        return TransformResponse(success=True)

    try:
        return await run_transform(
            unit, request, storage, readiness, font_path=app_settings.watermark_font_path
        )
    except DerivationError as exc:
        logger.error(
            "Transform failed unit={} output_key={} error={}",
            unit.value,
            request.output_key,
            str(exc),
        )
        return TransformResponse(success=False, error=str(exc))
