from fastapi import Header, HTTPException, Request

from gallery_media.config import Settings
from gallery_media.services.orchestrator import DerivationOrchestrator
from gallery_media.services.readiness import ReadinessStore
from gallery_media.services.storage import ObjectStorage


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_storage(request: Request) -> ObjectStorage:
    return request.app.state.storage


def get_readiness(request: Request) -> ReadinessStore:
    return request.app.state.readiness


def get_orchestrator(request: Request) -> DerivationOrchestrator:
    return request.app.state.orchestrator


def verify_service_token(request: Request, authorization: str | None = Header(default=None)) -> None:
    token = request.app.state.settings.transform_api_token
    if token and authorization != f"Bearer {token}":
        raise HTTPException(status_code=401, detail="Invalid service token")
