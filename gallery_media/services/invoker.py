import asyncio
from typing import Protocol

import httpx
from loguru import logger

from gallery_media.config import Settings
from gallery_media.models.asset import DerivedKind
from gallery_media.models.derive import TransformRequest, TransformResponse
from gallery_media.services.errors import DerivationTimeout, ProcessingError, TransportError
from gallery_media.services.readiness import ReadinessStore, wait_until_ready
from gallery_media.services.storage import ObjectStorage
from gallery_media.services.transforms import DEFAULT_FONT_PATH, OUTPUT_CONTENT_TYPE, unit_from_params
from gallery_media.validators.common import validate_label


class UnitInvoker(Protocol):
    async def invoke(self, kind: DerivedKind, request: TransformRequest) -> TransformResponse: ...


async def run_transform(
    kind: DerivedKind,
    request: TransformRequest,
    storage: ObjectStorage,
    readiness: ReadinessStore,
    font_path: str = DEFAULT_FONT_PATH,
) -> TransformResponse:
    if kind == DerivedKind.DISPLAY:
        validate_label(request.label)
    unit = unit_from_params(kind, request.kind_params, font_path=font_path)

    try:
        source_bytes = await asyncio.to_thread(storage.get, request.source_key)
    except FileNotFoundError as exc:
        raise ProcessingError(f"Source image not found: {request.source_key}") from exc

    output = await asyncio.to_thread(unit.render, source_bytes, request.label)
    await asyncio.to_thread(storage.put, request.output_key, output, OUTPUT_CONTENT_TYPE)
    await asyncio.to_thread(readiness.mark_ready, request.output_key)
    logger.info(
        "Transform complete unit={} source_key={} output_key={} size_bytes={}",
        kind.value,
        request.source_key,
        request.output_key,
        len(output),
    )
    return TransformResponse(success=True)


class LocalInvoker:
    def __init__(self, storage: ObjectStorage, readiness: ReadinessStore, font_path: str = DEFAULT_FONT_PATH):
        self.storage = storage
        self.readiness = readiness
        self.font_path = font_path

    async def invoke(self, kind: DerivedKind, request: TransformRequest) -> TransformResponse:
        return await run_transform(kind, request, self.storage, self.readiness, font_path=self.font_path)


class HttpInvoker:
    def __init__(
        self,
        client: httpx.AsyncClient,
        endpoint: str,
        api_token: str | None = None,
        readiness: ReadinessStore | None = None,
        detached: bool = False,
        max_attempts: int = 20,
        interval_ms: int = 500,
    ):
        if detached and readiness is None:
            raise ValueError("Detached transforms need a readiness store")
        self.client = client
        self.endpoint = endpoint.rstrip("/")
        self.api_token = api_token
        self.readiness = readiness
        self.detached = detached
        self.max_attempts = max_attempts
        self.interval_ms = interval_ms

    async def invoke(self, kind: DerivedKind, request: TransformRequest) -> TransformResponse:
        url = f"{self.endpoint}/transforms/{kind.value}"
        headers = {"Authorization": f"Bearer {self.api_token}"} if self.api_token else {}
        payload = request.model_copy(update={"detached": self.detached})
        logger.debug("Invoking transform unit={} url={} detached={}", kind.value, url, self.detached)
        if self.detached:
            await asyncio.to_thread(self.readiness.clear, request.output_key)

        try:
            response = await self.client.post(url, json=payload.model_dump(), headers=headers)
        except httpx.TimeoutException as exc:
            raise DerivationTimeout(f"Transform {kind.value} timed out: {exc}") from exc
        except httpx.HTTPError as exc:
            raise TransportError(f"Transform {kind.value} request failed: {exc}") from exc

        if response.status_code >= 400:
            raise TransportError(f"Transform {kind.value} returned status {response.status_code}")
        try:
            body = TransformResponse.model_validate(response.json())
        except ValueError as exc:
            raise TransportError(f"Transform {kind.value} returned a malformed body") from exc
        if not body.success:
            raise ProcessingError(body.error or f"Transform {kind.value} failed")

        if self.detached:
            ready = await wait_until_ready(self.readiness, [request.output_key], self.max_attempts, self.interval_ms)
            if not ready:
                raise ProcessingError(
                    f"Transform {kind.value} output not ready after {self.max_attempts} attempts"
                )
        return body


def build_invoker(
    app_settings: Settings,
    storage: ObjectStorage,
    readiness: ReadinessStore,
    client: httpx.AsyncClient | None = None,
) -> UnitInvoker:
    if app_settings.transform_mode == "local":
        return LocalInvoker(storage, readiness, font_path=app_settings.watermark_font_path)
    if client is None:
        raise ValueError(f"transform_mode={app_settings.transform_mode} needs an HTTP client")
    return HttpInvoker(
        client,
        app_settings.transform_endpoint,
        api_token=app_settings.transform_api_token,
        readiness=readiness,
        detached=app_settings.transform_mode == "detached",
        max_attempts=app_settings.readiness_max_attempts,
        interval_ms=app_settings.readiness_interval_ms,
    )
