from typing import Annotated, Any

from pydantic import BaseModel, ConfigDict, Field, StringConstraints

StrippedStr = Annotated[str, StringConstraints(strip_whitespace=True)]


class DeriveRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    source_key: StrippedStr
    owner_id: StrippedStr
    # Rendered into the watermark exactly as sent.
    display_label: str


class TransformRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    source_key: str = Field(min_length=1)
    output_key: str = Field(min_length=1)
    kind_params: dict[str, Any] = Field(default_factory=dict)
    label: str | None = None
    detached: bool = False


class TransformResponse(BaseModel):
    success: bool
    error: str | None = None


class SweepRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    referenced_keys: list[str] = Field(default_factory=list)
    execute: bool = False


class SweepReport(BaseModel):
    orphans: list[str]
    deleted: int = 0
    failed: int = 0
    executed: bool = False
