import logging
from urllib.parse import unquote, urlsplit

from backend.errors import PathResolutionAmbiguous

logger = logging.getLogger("fileportal.services.path_resolver")

DEFAULT_BUCKET = "student-files"


def _is_url(reference: str) -> bool:
    return reference.lower().startswith(("http://", "https://"))


def resolve(stored_reference: str, bucket: str = DEFAULT_BUCKET) -> str:
    """Turn a stored file reference into an object key inside `bucket`.

    New records store the key itself. Older ones store the full public URL,
    e.g. ``https://<project>.supabase.co/storage/v1/object/public/student-files/<key>``,
    from which everything after the bucket segment is the key. Never raises.
    """
    if not stored_reference or not _is_url(stored_reference):
        return stored_reference

    try:
        parts = urlsplit(stored_reference).path.split("/")
    except ValueError as e:
        logger.error("Error parsing file path %s: %s", stored_reference, e)
        return stored_reference

    if bucket in parts:
        index = parts.index(bucket)
        key = unquote("/".join(parts[index + 1:]))
        if key:
            logger.debug("Extracted storage path '%s' from %s", key, stored_reference)
            return key

    key = unquote(parts[-1])
    if not key:
        logger.warning(
            "%s: %s has no usable path segment — using it unchanged",
            PathResolutionAmbiguous.__name__, stored_reference,
        )
        return stored_reference

    logger.warning(
        "%s: no '%s' segment in %s — falling back to last path segment '%s'",
        PathResolutionAmbiguous.__name__, bucket, stored_reference, key,
    )
    return key
