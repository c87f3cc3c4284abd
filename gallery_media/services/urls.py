from gallery_media.models.asset import DerivedKeys, DerivedKind


def public_url(cdn_domain: str, key: str) -> str:
    normalized_key = key[1:] if key.startswith("/") else key
    return f"{cdn_domain.rstrip('/')}/{normalized_key}"


def public_urls(cdn_domain: str, keys: DerivedKeys) -> dict[DerivedKind, str]:
    return {kind: public_url(cdn_domain, keys.for_kind(kind)) for kind in DerivedKind}
