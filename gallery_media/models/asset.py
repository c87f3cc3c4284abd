from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict


class DerivedKind(str, Enum):
    DISPLAY = "display"
    THUMBNAIL = "thumbnail"
    ICON = "icon"


class DerivedStatus(str, Enum):
    PENDING = "pending"
    READY = "ready"
    FAILED = "failed"


class DerivedKeys(BaseModel):
    model_config = ConfigDict(frozen=True)

    display_key: str
    thumbnail_key: str
    icon_key: str

    def for_kind(self, kind: DerivedKind) -> str:
        if kind == DerivedKind.DISPLAY:
            return self.display_key
        if kind == DerivedKind.THUMBNAIL:
            return self.thumbnail_key
        return self.icon_key

    def as_list(self) -> list[str]:
        return [self.display_key, self.thumbnail_key, self.icon_key]


class DerivedAsset(BaseModel):
    derived_key: str
    kind: DerivedKind
    source_key: str
    status: DerivedStatus = DerivedStatus.PENDING
    public_url: str | None = None
    error: str | None = None

    def mark_ready(self, public_url: str) -> None:
        if self.status != DerivedStatus.PENDING:
            raise ValueError(f"{self.kind.value} asset is already {self.status.value}")
        self.status = DerivedStatus.READY
        self.public_url = public_url

    def mark_failed(self, error: str) -> None:
        if self.status != DerivedStatus.PENDING:
            raise ValueError(f"{self.kind.value} asset is already {self.status.value}")
        self.status = DerivedStatus.FAILED
        self.error = error


class UnitOutcome(BaseModel):
    kind: DerivedKind
    success: bool
    error: str | None = None


class ProcessingResult(BaseModel):
    original_url: str
    display_url: str
    thumbnail_url: str
    icon_url: str
    processed_at: datetime

    @classmethod
    def from_assets(
        cls,
        original_url: str,
        assets: dict[DerivedKind, DerivedAsset],
        processed_at: datetime,
    ) -> "ProcessingResult":
        missing = [
            kind.value
            for kind in DerivedKind
            if kind not in assets or assets[kind].status != DerivedStatus.READY
        ]
        if missing:
            raise ValueError(f"Derived assets not ready: {', '.join(missing)}")
        return cls(
            original_url=original_url,
            display_url=assets[DerivedKind.DISPLAY].public_url,
            thumbnail_url=assets[DerivedKind.THUMBNAIL].public_url,
            icon_url=assets[DerivedKind.ICON].public_url,
            processed_at=processed_at,
        )
