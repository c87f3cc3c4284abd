from fastapi import APIRouter, Depends, HTTPException
from loguru import logger

from gallery_media.models.asset import ProcessingResult
from gallery_media.models.derive import DeriveRequest
from gallery_media.routes.deps import get_orchestrator
from gallery_media.services.errors import AggregateProcessingError, DerivationTimeout, ValidationError
from gallery_media.services.orchestrator import DerivationOrchestrator

router = APIRouter(prefix="/derive", tags=["derive"])

PROCESSING_FAILED = "Image processing failed, please retry"


@router.post("", response_model=ProcessingResult)
async def derive_assets(
    request: DeriveRequest,
    orchestrator: DerivationOrchestrator = Depends(get_orchestrator),
) -> ProcessingResult:
    try:
        return await orchestrator.derive_all(request.source_key, request.owner_id, request.display_label)
    except ValidationError as exc:
        logger.warning("Derive rejected source_key={} error={}", request.source_key, str(exc))
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except AggregateProcessingError as exc:
        logger.error(
            "Derive failed source_key={} failed_units={}",
            request.source_key,
            exc.failed_units,
        )
        raise HTTPException(status_code=502, detail=PROCESSING_FAILED) from exc
    except DerivationTimeout as exc:
        logger.error("Derive timed out source_key={} error={}", request.source_key, str(exc))
        raise HTTPException(status_code=504, detail=PROCESSING_FAILED) from exc
