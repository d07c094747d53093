"""
Delivery of a granted file onto the user's device.

Hosts block downloads in different ways (cross-origin fetches, CSP, popup
blockers), so no single method is reliable. `DownloadTrigger` tries an
ordered list of strategies and stops at the first one that succeeds:

1. fetch the bytes and save them under the display name,
2. hand the grant URL itself to the platform's save-as action,
3. open the grant URL in a new context and let the destination decide.

A failing strategy never raises to the caller; it is recorded in the
outcome's `attempts` and the next one runs.
"""
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Sequence

import httpx

from backend.errors import RetrievalFailed
from backend.models import AccessGrant, DownloadOutcome, DownloadStatus, StrategyAttempt
from backend.services.download_platform import DownloadPlatform
from backend.services.transient_refs import TransientReferenceRegistry, transient_references

logger = logging.getLogger("fileportal.services.download_trigger")

FETCH_HEADERS = {
    "Accept": "*/*",
    "Cache-Control": "no-cache",
}


def _redact(url: str) -> str:
    # signed URLs carry their token in the query string
    return url.split("?", 1)[0]


@dataclass
class StrategyResult:
    succeeded: bool
    detail: str = ""
    filename_applied: bool = True


class DeliveryStrategy(ABC):
    """One way of getting the bytes behind a grant onto the device."""

    name = "strategy"

    def __init__(self, platform: DownloadPlatform):
        self.platform = platform

    @abstractmethod
    async def attempt(self, grant: AccessGrant, display_name: str) -> StrategyResult:
        """Try to deliver; return a failed result or raise to give up."""


class FetchAndSaveStrategy(DeliveryStrategy):
    name = "fetch"

    def __init__(
        self,
        platform: DownloadPlatform,
        client: httpx.AsyncClient | None = None,
        registry: TransientReferenceRegistry = transient_references,
        timeout: float | None = 60.0,
    ):
        super().__init__(platform)
        self.client = client
        self.registry = registry
        self.timeout = timeout

    async def _fetch(self, url: str) -> bytes:
        client = self.client or httpx.AsyncClient(timeout=self.timeout, follow_redirects=True)
        try:
            response = await client.get(url, headers=FETCH_HEADERS)
        except httpx.HTTPError as e:
            raise RetrievalFailed(url, reason=f"{type(e).__name__}: {e}") from e
        finally:
            if client is not self.client:
                await client.aclose()

        if not response.is_success:
            raise RetrievalFailed(url, status_code=response.status_code)
        return response.content

    async def attempt(self, grant: AccessGrant, display_name: str) -> StrategyResult:
        data = await self._fetch(grant.url)
        with self.registry.hold(data) as ref:
            await self.platform.save_as(ref, display_name)
            return StrategyResult(True, f"saved {ref.size} bytes as '{display_name}'")


class DirectLinkStrategy(DeliveryStrategy):
    name = "direct_link"

    async def attempt(self, grant: AccessGrant, display_name: str) -> StrategyResult:
        await self.platform.save_url(grant.url, display_name, no_referrer=True, no_opener=True)
        return StrategyResult(True, f"saved link target as '{display_name}'")


class NewContextStrategy(DeliveryStrategy):
    name = "new_context"

    async def attempt(self, grant: AccessGrant, display_name: str) -> StrategyResult:
        opened = await self.platform.open_new_context(grant.url, no_opener=True, no_referrer=True)
        if not opened:
            return StrategyResult(False, "opening a new context was blocked")
        return StrategyResult(True, "opened in a new context", filename_applied=False)


def default_strategies(
    platform: DownloadPlatform,
    client: httpx.AsyncClient | None = None,
    registry: TransientReferenceRegistry = transient_references,
    timeout: float | None = 60.0,
) -> List[DeliveryStrategy]:
    return [
        FetchAndSaveStrategy(platform, client=client, registry=registry, timeout=timeout),
        DirectLinkStrategy(platform),
        NewContextStrategy(platform),
    ]


class DownloadTrigger:
    def __init__(self, strategies: Sequence[DeliveryStrategy]):
        if not strategies:
            raise ValueError("DownloadTrigger needs at least one strategy")
        self.strategies = list(strategies)

    async def download(self, grant: AccessGrant, display_name: str) -> DownloadOutcome:
        logger.debug(
            "download called — key=%s, source=%s, name='%s', %d strategies",
            grant.key, grant.source, display_name, len(self.strategies),
        )
        attempts: List[StrategyAttempt] = []

        for strategy in self.strategies:
            start = time.perf_counter()
            try:
                result = await strategy.attempt(grant, display_name)
            except Exception as e:
                result = StrategyResult(False, f"{type(e).__name__}: {e}")
            elapsed_ms = (time.perf_counter() - start) * 1000

            attempts.append(StrategyAttempt(strategy.name, result.succeeded, result.detail))
            if result.succeeded:
                logger.info(
                    "Download of '%s' done via %s in %.1fms — %s",
                    display_name, strategy.name, elapsed_ms, result.detail,
                )
                return DownloadOutcome(
                    status=DownloadStatus.DONE,
                    strategy=strategy.name,
                    filename_applied=result.filename_applied,
                    attempts=attempts,
                )

            logger.warning(
                "Strategy %s failed for %s after %.1fms: %s",
                strategy.name, _redact(grant.url), elapsed_ms, result.detail,
            )

        logger.error(
            "All %d download strategies failed for '%s' (key=%s)",
            len(attempts), display_name, grant.key,
        )
        return DownloadOutcome(status=DownloadStatus.EXHAUSTED, attempts=attempts)
