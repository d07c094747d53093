class FilePortalError(Exception):
    """Base class for file access and delivery errors."""


class PathResolutionAmbiguous(FilePortalError):
    """A stored reference did not contain the bucket marker.

    Never raised: the resolver falls back to a best-effort key and logs
    under this name instead.
    """


class AccessDenied(FilePortalError):
    """Neither a signed nor a public URL could be obtained for a key."""

    def __init__(self, key: str, reason: str = ""):
        self.key = key
        self.reason = reason
        message = f"Unable to retrieve file '{key}'"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class RetrievalFailed(FilePortalError):
    """A single delivery strategy could not fetch the grant URL."""

    def __init__(self, url: str, status_code: int | None = None, reason: str = ""):
        self.url = url
        self.status_code = status_code
        self.reason = reason
        if status_code is not None:
            message = f"HTTP error! status: {status_code}"
        else:
            message = reason or "retrieval failed"
        super().__init__(message)


class AllStrategiesExhausted(FilePortalError):
    """Every delivery strategy failed; carries the diagnostic outcome."""

    def __init__(self, outcome):
        self.outcome = outcome
        tried = ", ".join(a.strategy for a in outcome.attempts) or "none"
        super().__init__(f"All download strategies failed ({tried})")
