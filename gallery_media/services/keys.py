import posixpath

from gallery_media.models.asset import DerivedKeys, DerivedKind
from gallery_media.validators.common import validate_owner_id, validate_source_key

ORIGINALS_PREFIX = "originals"
DERIVED_EXTENSION = ".jpg"
NAMESPACES: dict[DerivedKind, str] = {
    DerivedKind.DISPLAY: "display",
    DerivedKind.THUMBNAIL: "thumbnails",
    DerivedKind.ICON: "icons",
}


def derived_key(source_key: str, owner_id: str, kind: DerivedKind) -> str:
    validate_source_key(source_key)
    validate_owner_id(owner_id)
    stem, _ = posixpath.splitext(posixpath.basename(source_key))
    return f"{NAMESPACES[kind]}/{owner_id}/{stem}{DERIVED_EXTENSION}"


def derive_keys(source_key: str, owner_id: str) -> DerivedKeys:
    return DerivedKeys(
        display_key=derived_key(source_key, owner_id, DerivedKind.DISPLAY),
        thumbnail_key=derived_key(source_key, owner_id, DerivedKind.THUMBNAIL),
        icon_key=derived_key(source_key, owner_id, DerivedKind.ICON),
    )


def original_key(owner_id: str, file_id: str, extension: str) -> str:
    validate_owner_id(owner_id)
    return f"{ORIGINALS_PREFIX}/{owner_id}/{file_id}{extension}"
