import asyncio

from fastapi import APIRouter, Depends

from gallery_media.models.derive import SweepReport, SweepRequest
from gallery_media.routes.deps import get_storage, verify_service_token
from gallery_media.services.storage import ObjectStorage
from gallery_media.services.sweep import sweep_orphans

router = APIRouter(prefix="/maintenance", tags=["maintenance"], dependencies=[Depends(verify_service_token)])


@router.post("/sweep", response_model=SweepReport)
async def sweep(request: SweepRequest, storage: ObjectStorage = Depends(get_storage)) -> SweepReport:
    return await asyncio.to_thread(sweep_orphans, storage, request.referenced_keys, request.execute)
