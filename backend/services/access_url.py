import asyncio
import logging
from datetime import datetime, timedelta, timezone

from backend.errors import AccessDenied
from backend.models import AccessGrant

logger = logging.getLogger("fileportal.services.access_url")

SIGNED_URL_TTL_SECONDS = 300


def _signed_url_from(response) -> str | None:
    # storage3 has returned both spellings across releases
    if isinstance(response, dict):
        return response.get("signedURL") or response.get("signedUrl")
    return getattr(response, "signed_url", None)


class AccessURLProvider:
    """Obtains short-lived URLs for objects in a single storage bucket.

    `bucket` is a Supabase storage file API (``client.storage.from_(name)``)
    or anything exposing ``create_signed_url`` and ``get_public_url``.
    Grants are never cached: each download asks for a new one.
    """

    def __init__(self, bucket, ttl_seconds: int = SIGNED_URL_TTL_SECONDS):
        self.bucket = bucket
        self.ttl_seconds = ttl_seconds

    def _signed_grant_sync(self, key: str) -> AccessGrant:
        response = self.bucket.create_signed_url(key, self.ttl_seconds)
        url = _signed_url_from(response)
        if not url:
            raise ValueError(f"signing response carried no URL: {response!r}")
        expires_at = datetime.now(timezone.utc) + timedelta(seconds=self.ttl_seconds)
        return AccessGrant(
            key=key, url=url, source="signed",
            expires_at=expires_at, ttl_seconds=self.ttl_seconds,
        )

    def _public_grant_sync(self, key: str) -> AccessGrant:
        url = self.bucket.get_public_url(key)
        if not url:
            raise ValueError("no public URL returned")
        return AccessGrant(key=key, url=url, source="public")

    async def obtain_access_url(self, key: str) -> AccessGrant:
        logger.debug("Requesting signed URL for key=%s (ttl=%ds)", key, self.ttl_seconds)
        try:
            grant = await asyncio.to_thread(self._signed_grant_sync, key)
            logger.debug("Signed URL issued for key=%s, expires_at=%s", key, grant.expires_at)
            return grant
        except Exception as e:
            logger.warning("Error creating download URL for key=%s: %s — trying public URL", key, e)
            signing_error = e

        try:
            grant = await asyncio.to_thread(self._public_grant_sync, key)
            logger.info("Using public URL fallback for key=%s", key)
            return grant
        except Exception as e:
            logger.error(
                "Access denied for key=%s — signing failed (%s), public URL failed (%s)",
                key, signing_error, e,
            )
            raise AccessDenied(key, reason=str(e)) from e
