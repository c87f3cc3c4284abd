import asyncio
import time
from datetime import datetime, timezone

import pytest

from conftest import FakeInvoker, make_image
from gallery_media.models.asset import DerivedKind, UnitOutcome
from gallery_media.models.derive import TransformResponse
from gallery_media.services.errors import (
    AggregateProcessingError,
    DerivationTimeout,
    ProcessingError,
    TransportError,
    ValidationError,
)
from gallery_media.services.invoker import LocalInvoker
from gallery_media.services.orchestrator import DerivationOrchestrator
from gallery_media.services.transforms import ThumbnailDerivation

FIXED_NOW = datetime(2026, 1, 2, 3, 4, 5, tzinfo=timezone.utc)


def _orchestrator(app_settings, invoker, **overrides) -> DerivationOrchestrator:
    return DerivationOrchestrator(app_settings.model_copy(update=overrides), invoker, clock=lambda: FIXED_NOW)


@pytest.mark.asyncio
async def test_derive_all_returns_urls_on_one_origin(app_settings):
    invoker = FakeInvoker()
    result = await _orchestrator(app_settings, invoker).derive_all("originals/u1/img.jpg", "u1", "jane_doe")

    assert result.original_url == "https://cdn.example.test/originals/u1/img.jpg"
    assert result.display_url == "https://cdn.example.test/display/u1/img.jpg"
    assert result.thumbnail_url == "https://cdn.example.test/thumbnails/u1/img.jpg"
    assert result.icon_url == "https://cdn.example.test/icons/u1/img.jpg"
    assert result.processed_at == FIXED_NOW
    assert sorted(kind.value for kind, _ in invoker.calls) == ["display", "icon", "thumbnail"]


@pytest.mark.asyncio
async def test_requests_carry_unit_params_and_label(app_settings):
    invoker = FakeInvoker()
    await _orchestrator(app_settings, invoker).derive_all("originals/u1/img.jpg", "u1", "jane_doe")
    requests = {kind: request for kind, request in invoker.calls}

    assert requests[DerivedKind.DISPLAY].label == "jane_doe"
    assert requests[DerivedKind.THUMBNAIL].label is None
    assert requests[DerivedKind.ICON].kind_params == {"size": 128, "quality": 80}
    assert requests[DerivedKind.THUMBNAIL].kind_params == {"width": 400, "height": 400, "quality": 80}
    assert requests[DerivedKind.ICON].output_key == "icons/u1/img.jpg"


@pytest.mark.asyncio
@pytest.mark.parametrize("label", ["", "x" * 51])
async def test_bad_label_fails_before_any_call(app_settings, label):
    invoker = FakeInvoker()
    with pytest.raises(ValidationError):
        await _orchestrator(app_settings, invoker).derive_all("originals/u1/img.jpg", "u1", label)
    assert invoker.calls == []


@pytest.mark.asyncio
async def test_bad_source_key_fails_before_any_call(app_settings):
    invoker = FakeInvoker()
    with pytest.raises(ValidationError):
        await _orchestrator(app_settings, invoker).derive_all("", "u1", "jane_doe")
    assert invoker.calls == []


@pytest.mark.asyncio
async def test_units_run_concurrently(app_settings):
    started = asyncio.Event()
    count = 0

    class BarrierInvoker:
        async def invoke(self, kind, request):
            nonlocal count
            count += 1
            if count == 3:
                started.set()
            await asyncio.wait_for(started.wait(), timeout=1)
            return TransformResponse(success=True)

    result = await _orchestrator(app_settings, BarrierInvoker()).derive_all("originals/u1/img.jpg", "u1", "jane_doe")
    assert result.icon_url.endswith("icons/u1/img.jpg")


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "kind,error",
    [
        (DerivedKind.ICON, ProcessingError("unreadable image")),
        (DerivedKind.DISPLAY, TransportError("connection refused")),
    ],
)
async def test_single_failure_fails_whole_call(app_settings, kind, error):
    invoker = FakeInvoker(failures={kind: error})
    with pytest.raises(AggregateProcessingError) as exc_info:
        await _orchestrator(app_settings, invoker).derive_all("originals/u1/img.jpg", "u1", "jane_doe")

    assert exc_info.value.failed_units == [kind.value]
    assert len(invoker.completed) == 2
    outcome = exc_info.value.outcome_for(kind)
    assert outcome is not None and not outcome.success
    assert str(error) in outcome.error


@pytest.mark.asyncio
async def test_thumbnail_timeout_is_reported_as_failed_unit(app_settings):
    invoker = FakeInvoker(delays={DerivedKind.THUMBNAIL: 0.3})
    orchestrator = _orchestrator(app_settings, invoker, unit_timeout_seconds=0.05)
    with pytest.raises(AggregateProcessingError) as exc_info:
        await orchestrator.derive_all("originals/u1/img.jpg", "u1", "jane_doe")

    assert exc_info.value.failed_units == ["thumbnail"]
    assert "timed out" in exc_info.value.outcome_for(DerivedKind.THUMBNAIL).error
    assert sorted(kind.value for kind in invoker.completed) == ["display", "icon"]

    await asyncio.gather(*orchestrator._inflight)
    assert DerivedKind.THUMBNAIL in invoker.completed


@pytest.mark.asyncio
async def test_timed_out_unit_still_writes_its_output(app_settings, storage, readiness, monkeypatch):
    storage.put("originals/u1/img.jpg", make_image(160, 120), "image/jpeg")
    render = ThumbnailDerivation.render

    def slow_render(self, source_bytes, label=None):
        time.sleep(1.0)
        return render(self, source_bytes, label)

    monkeypatch.setattr(ThumbnailDerivation, "render", slow_render)
    orchestrator = _orchestrator(app_settings, LocalInvoker(storage, readiness), unit_timeout_seconds=0.5)
    with pytest.raises(AggregateProcessingError) as exc_info:
        await orchestrator.derive_all("originals/u1/img.jpg", "u1", "jane_doe")
    assert exc_info.value.failed_units == ["thumbnail"]

    await asyncio.gather(*orchestrator._inflight)
    assert storage.exists("thumbnails/u1/img.jpg")
    assert readiness.is_ready("thumbnails/u1/img.jpg")


@pytest.mark.asyncio
async def test_join_ceiling_raises_timeout_without_cancelling_units(app_settings):
    delays = {kind: 0.3 for kind in DerivedKind}
    invoker = FakeInvoker(delays=delays)
    orchestrator = _orchestrator(app_settings, invoker, join_timeout_seconds=0.05)

    with pytest.raises(DerivationTimeout) as exc_info:
        await orchestrator.derive_all("originals/u1/img.jpg", "u1", "jane_doe")
    assert isinstance(exc_info.value, TimeoutError)

    results = await asyncio.gather(*orchestrator._inflight)
    outcomes = [result for result in results if isinstance(result, UnitOutcome)]
    assert len(outcomes) == 3
    assert all(outcome.success for outcome in outcomes)
    assert len(invoker.completed) == 3


@pytest.mark.asyncio
async def test_cancelling_caller_leaves_units_running(app_settings):
    invoker = FakeInvoker(delays={kind: 0.2 for kind in DerivedKind})
    orchestrator = _orchestrator(app_settings, invoker)

    caller = asyncio.create_task(orchestrator.derive_all("originals/u1/img.jpg", "u1", "jane_doe"))
    await asyncio.sleep(0.05)
    caller.cancel()
    with pytest.raises(asyncio.CancelledError):
        await caller

    results = await asyncio.gather(*orchestrator._inflight)
    outcomes = [result for result in results if isinstance(result, UnitOutcome)]
    assert sorted(outcome.kind.value for outcome in outcomes) == ["display", "icon", "thumbnail"]
    assert all(outcome.success for outcome in outcomes)
    assert sorted(kind.value for kind in invoker.completed) == ["display", "icon", "thumbnail"]


@pytest.mark.asyncio
async def test_derive_all_is_idempotent(app_settings, storage, readiness):
    storage.put("originals/u1/img.jpg", make_image(1600, 1000), "image/jpeg")
    orchestrator = _orchestrator(app_settings, LocalInvoker(storage, readiness))

    first = await orchestrator.derive_all("originals/u1/img.jpg", "u1", "jane_doe")
    keys = ["display/u1/img.jpg", "thumbnails/u1/img.jpg", "icons/u1/img.jpg"]
    first_bytes = [storage.get(key) for key in keys]
    second = await orchestrator.derive_all("originals/u1/img.jpg", "u1", "jane_doe")

    assert first == second
    assert [storage.get(key) for key in keys] == first_bytes
    assert all(readiness.is_ready(key) for key in keys)


@pytest.mark.asyncio
async def test_missing_original_fails_every_unit(app_settings, storage, readiness):
    orchestrator = _orchestrator(app_settings, LocalInvoker(storage, readiness))
    with pytest.raises(AggregateProcessingError) as exc_info:
        await orchestrator.derive_all("originals/u1/missing.jpg", "u1", "jane_doe")
    assert sorted(exc_info.value.failed_units) == ["display", "icon", "thumbnail"]
    assert list(storage.list_keys("display/")) == []
