from collections.abc import Iterable

from loguru import logger

from gallery_media.models.derive import SweepReport
from gallery_media.services.errors import TransportError
from gallery_media.services.keys import NAMESPACES
from gallery_media.services.storage import ObjectStorage


def find_orphans(storage: ObjectStorage, referenced_keys: Iterable[str]) -> list[str]:
    referenced = set(referenced_keys)
    orphans: list[str] = []
    for namespace in NAMESPACES.values():
        for key in storage.list_keys(f"{namespace}/"):
            if key not in referenced:
                orphans.append(key)
    return orphans


def sweep_orphans(storage: ObjectStorage, referenced_keys: Iterable[str], execute: bool = False) -> SweepReport:
    """Remove derived objects that no catalog record references.

    A failed derivation leaves the siblings that did succeed in storage; this
    sweep is what reclaims them. Without ``execute`` it only reports.
    """
    orphans = find_orphans(storage, referenced_keys)
    logger.info("Orphan sweep scanned orphan_count={} execute={}", len(orphans), execute)
    report = SweepReport(orphans=orphans, executed=execute)
    if not execute:
        return report

    for key in orphans:
        try:
            storage.delete(key)
            report.deleted += 1
        except (TransportError, OSError) as exc:
            report.failed += 1
            logger.error("Orphan delete failed key={} error={}", key, str(exc))
    logger.info("Orphan sweep finished deleted={} failed={}", report.deleted, report.failed)
    return report
