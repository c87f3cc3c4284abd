import posixpath

from gallery_media.services.errors import ValidationError

MAX_LABEL_LENGTH = 50

ALLOWED_TYPES = {"image/jpeg", "image/png", "image/gif", "image/webp"}
EXTENSIONS_BY_TYPE = {
    "image/jpeg": ".jpg",
    "image/png": ".png",
    "image/gif": ".gif",
    "image/webp": ".webp",
}


def validate_label(label: str | None) -> str:
    if not label:
        raise ValidationError("Display label is required")
    if len(label) > MAX_LABEL_LENGTH:
        raise ValidationError(f"Display label must be {MAX_LABEL_LENGTH} characters or less")
    return label


def validate_owner_id(owner_id: str | None) -> str:
    if not owner_id or not owner_id.strip():
        raise ValidationError("Owner id is required")
    if "/" in owner_id or owner_id in {".", ".."}:
        raise ValidationError(f"Owner id is malformed: {owner_id!r}")
    return owner_id


def validate_source_key(source_key: str | None) -> str:
    if not source_key or not source_key.strip():
        raise ValidationError("Source key is required")
    if ".." in source_key.split("/") or source_key.endswith("/"):
        raise ValidationError(f"Source key is malformed: {source_key!r}")
    stem, _ = posixpath.splitext(posixpath.basename(source_key))
    if not stem or stem.startswith("."):
        raise ValidationError(f"Source key has no file name: {source_key!r}")
    return source_key


def validate_image_type(content_type: str | None) -> str:
    if content_type not in ALLOWED_TYPES:
        raise ValidationError("File must be an image (JPEG, PNG, WebP, or GIF)")
    return content_type
