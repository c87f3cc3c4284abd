from pydantic import BaseModel, ConfigDict


class SourceAsset(BaseModel):
    model_config = ConfigDict(frozen=True)

    storage_key: str
    owner_id: str
    mime_type: str
    width: int | None = None
    height: int | None = None
    size_bytes: int | None = None
