import asyncio
from datetime import datetime, timezone
from functools import partial
from typing import Callable

from loguru import logger

from gallery_media.config import Settings
from gallery_media.models.asset import DerivedAsset, DerivedKind, ProcessingResult, UnitOutcome
from gallery_media.models.derive import TransformRequest
from gallery_media.services.errors import AggregateProcessingError, DerivationError, DerivationTimeout
from gallery_media.services.invoker import UnitInvoker
from gallery_media.services.keys import derive_keys
from gallery_media.services.transforms import DerivationUnit, build_units
from gallery_media.services.urls import public_url, public_urls
from gallery_media.validators.common import validate_label


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DerivationOrchestrator:
    """Fans one original out to the display, thumbnail and icon units.

    All three units must succeed before a ProcessingResult exists. A failure
    in any unit fails the whole call; siblings that already wrote their
    output are left in place for the orphan sweep. Timeouts and caller
    cancellation never cancel a running transform.
    """

    def __init__(
        self,
        app_settings: Settings,
        invoker: UnitInvoker,
        units: dict[DerivedKind, DerivationUnit] | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.settings = app_settings
        self.invoker = invoker
        self.units = units or build_units(app_settings)
        self.clock = clock
        self._inflight: set[asyncio.Task] = set()

    async def derive_all(self, source_key: str, owner_id: str, display_label: str) -> ProcessingResult:
        validate_label(display_label)
        keys = derive_keys(source_key, owner_id)
        urls = public_urls(self.settings.cdn_domain, keys)
        assets = {
            kind: DerivedAsset(derived_key=keys.for_kind(kind), kind=kind, source_key=source_key)
            for kind in DerivedKind
        }
        logger.info(
            "Derivation started source_key={} owner_id={} derived_keys={}",
            source_key,
            owner_id,
            keys.as_list(),
        )

        tasks: dict[DerivedKind, asyncio.Task] = {}
        for kind in DerivedKind:
            request = TransformRequest(
                source_key=source_key,
                output_key=keys.for_kind(kind),
                kind_params=self.units[kind].params(),
                label=display_label if kind == DerivedKind.DISPLAY else None,
            )
            tasks[kind] = self._launch(self._run_unit(kind, request, assets[kind], urls[kind]))

        # asyncio.wait leaves unfinished tasks running, on timeout and on caller cancellation.
        _, pending = await asyncio.wait(tasks.values(), timeout=self.settings.join_timeout_seconds)
        if pending:
            unfinished = [kind.value for kind, task in tasks.items() if task in pending]
            logger.error(
                "Derivation join timed out source_key={} timeout_seconds={} unfinished_units={}",
                source_key,
                self.settings.join_timeout_seconds,
                unfinished,
            )
            raise DerivationTimeout(
                f"Derivation of {source_key} exceeded {self.settings.join_timeout_seconds}s"
            )

        outcomes = [tasks[kind].result() for kind in DerivedKind]
        failed = [o for o in outcomes if not o.success]
        if failed:
            logger.error(
                "Derivation failed source_key={} failed_units={} errors={}",
                source_key,
                [o.kind.value for o in failed],
                {o.kind.value: o.error for o in failed},
            )
            raise AggregateProcessingError(outcomes)

        result = ProcessingResult.from_assets(
            original_url=public_url(self.settings.cdn_domain, source_key),
            assets=assets,
            processed_at=self.clock(),
        )
        logger.info("Derivation finished source_key={} processed_at={}", source_key, result.processed_at)
        return result

    def _launch(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)
        return task

    async def _run_unit(
        self,
        kind: DerivedKind,
        request: TransformRequest,
        asset: DerivedAsset,
        url: str,
    ) -> UnitOutcome:
        # A unit that overruns its timeout is reported failed but keeps running.
        invocation = self._launch(self.invoker.invoke(kind, request))
        done, _ = await asyncio.wait({invocation}, timeout=self.settings.unit_timeout_seconds)
        if not done:
            invocation.add_done_callback(partial(_log_late_unit, kind, request.output_key))
            error = f"timed out after {self.settings.unit_timeout_seconds}s"
        else:
            try:
                invocation.result()
            except DerivationError as exc:
                error = f"{type(exc).__name__}: {exc}"
            except Exception as exc:
                logger.exception("Unit crashed unit={} output_key={}", kind.value, request.output_key)
                error = f"{type(exc).__name__}: {exc}"
            else:
                asset.mark_ready(url)
                logger.info("Unit ready unit={} output_key={}", kind.value, request.output_key)
                return UnitOutcome(kind=kind, success=True)

        asset.mark_failed(error)
        logger.error("Unit failed unit={} output_key={} error={}", kind.value, request.output_key, error)
        return UnitOutcome(kind=kind, success=False, error=error)


def _log_late_unit(kind: DerivedKind, output_key: str, task: asyncio.Task) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.warning("Late unit failed unit={} output_key={} error={}", kind.value, output_key, str(exc))
    else:
        logger.info("Late unit finished unit={} output_key={}", kind.value, output_key)
