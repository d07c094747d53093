import logging
import uuid
from contextlib import contextmanager
from dataclasses import dataclass

logger = logging.getLogger("fileportal.services.transient_refs")


@dataclass(frozen=True)
class TransientReference:
    """In-memory handle to fetched bytes, valid until its registry releases it."""

    handle: str
    data: bytes

    @property
    def size(self) -> int:
        return len(self.data)


class TransientReferenceRegistry:
    """Tracks transient references that still have to be released.

    Handles are unique per hold, so concurrent downloads never share an entry.
    """

    def __init__(self):
        self._pending: dict[str, TransientReference] = {}
        self.created = 0

    @property
    def pending(self) -> int:
        return len(self._pending)

    def is_live(self, handle: str) -> bool:
        return handle in self._pending

    @contextmanager
    def hold(self, data: bytes):
        ref = TransientReference(handle=f"blob:{uuid.uuid4()}", data=data)
        self._pending[ref.handle] = ref
        self.created += 1
        logger.debug("Holding %s (%d bytes), %d pending", ref.handle, ref.size, self.pending)
        try:
            yield ref
        finally:
            self._pending.pop(ref.handle, None)
            logger.debug("Released %s, %d pending", ref.handle, self.pending)


transient_references = TransientReferenceRegistry()
