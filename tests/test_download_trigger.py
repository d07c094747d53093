import asyncio

import httpx
import pytest

from backend.models import AccessGrant, DownloadStatus
from backend.services.download_trigger import (
    DeliveryStrategy,
    DownloadTrigger,
    StrategyResult,
    default_strategies,
)
from backend.services.transient_refs import TransientReferenceRegistry

from fakes import FakePlatform

GRANT = AccessGrant(
    key="student-1/report.pdf",
    url="https://project.supabase.co/storage/v1/object/sign/student-files/student-1/report.pdf?token=t",
    source="signed",
)


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def _ok(request: httpx.Request) -> httpx.Response:
    return httpx.Response(200, content=b"%PDF-1.7 body")


def _network_error(request: httpx.Request) -> httpx.Response:
    raise httpx.ConnectError("connection refused", request=request)


def _run(registry, platform, handler):
    async def go():
        async with _client(handler) as client:
            trigger = DownloadTrigger(default_strategies(platform, client=client, registry=registry))
            return await trigger.download(GRANT, "Report.pdf")

    return asyncio.run(go())


def test_fetch_and_save_succeeds_first():
    registry = TransientReferenceRegistry()
    platform = FakePlatform(registry=registry)
    seen = []

    def handler(request):
        seen.append(request)
        return _ok(request)

    outcome = _run(registry, platform, handler)

    assert outcome.status is DownloadStatus.DONE
    assert outcome.strategy == "fetch"
    assert outcome.filename_applied is True
    assert platform.saved == [("Report.pdf", b"%PDF-1.7 body")]
    assert platform.linked == [] and platform.opened == []
    assert seen[0].headers["Accept"] == "*/*"
    assert seen[0].headers["Cache-Control"] == "no-cache"
    # held while saving, released afterwards
    assert platform.live_during_save == [True]
    assert registry.created == 1
    assert registry.pending == 0


def test_network_error_falls_back_to_direct_link_without_transient_reference():
    registry = TransientReferenceRegistry()
    platform = FakePlatform(registry=registry)

    outcome = _run(registry, platform, _network_error)

    assert outcome.status is DownloadStatus.DONE
    assert outcome.strategy == "direct_link"
    assert platform.linked == [(GRANT.url, "Report.pdf", True, True)]
    assert registry.created == 0
    assert [(a.strategy, a.succeeded) for a in outcome.attempts] == [
        ("fetch", False),
        ("direct_link", True),
    ]
    assert "ConnectError" in outcome.attempts[0].detail


def test_http_error_status_is_a_fetch_failure():
    registry = TransientReferenceRegistry()
    platform = FakePlatform(registry=registry)

    outcome = _run(registry, platform, lambda request: httpx.Response(403))

    assert outcome.strategy == "direct_link"
    assert outcome.attempts[0].detail == "RetrievalFailed: HTTP error! status: 403"
    assert registry.created == 0


def test_new_context_is_last_resort_and_loses_filename():
    registry = TransientReferenceRegistry()
    platform = FakePlatform(registry=registry, save_url_error=PermissionError("blocked by CSP"))

    outcome = _run(registry, platform, _network_error)

    assert outcome.status is DownloadStatus.DONE
    assert outcome.strategy == "new_context"
    assert outcome.filename_applied is False
    assert platform.opened == [GRANT.url]


def test_all_strategies_failing_is_exhausted_and_leaks_nothing():
    registry = TransientReferenceRegistry()
    platform = FakePlatform(
        registry=registry,
        save_as_error=OSError("disk full"),
        save_url_error=PermissionError("blocked"),
        open_result=False,
    )

    outcome = _run(registry, platform, _ok)

    assert outcome.status is DownloadStatus.EXHAUSTED
    assert outcome.succeeded is False
    assert outcome.strategy is None
    assert [a.strategy for a in outcome.attempts] == ["fetch", "direct_link", "new_context"]
    assert not any(a.succeeded for a in outcome.attempts)
    assert registry.created == 1
    assert registry.pending == 0


def test_raising_new_context_is_also_exhaustion():
    registry = TransientReferenceRegistry()
    platform = FakePlatform(
        registry=registry,
        save_url_error=PermissionError("blocked"),
        open_error=RuntimeError("popup blocked"),
    )

    outcome = _run(registry, platform, _network_error)

    assert outcome.status is DownloadStatus.EXHAUSTED
    assert outcome.attempts[-1].detail == "RuntimeError: popup blocked"


def test_cancellation_propagates_and_releases_reference():
    registry = TransientReferenceRegistry()
    platform = FakePlatform(registry=registry, save_as_error=asyncio.CancelledError())

    with pytest.raises(asyncio.CancelledError):
        _run(registry, platform, _ok)

    assert registry.pending == 0
    assert platform.linked == []


def test_strategies_run_in_order_until_first_success():
    calls = []

    class Recording(DeliveryStrategy):
        def __init__(self, name, succeed):
            super().__init__(platform=None)
            self.name = name
            self.succeed = succeed

        async def attempt(self, grant, display_name):
            calls.append(self.name)
            return StrategyResult(self.succeed, self.name)

    trigger = DownloadTrigger([Recording("a", False), Recording("b", True), Recording("c", True)])
    outcome = asyncio.run(trigger.download(GRANT, "x"))

    assert calls == ["a", "b"]
    assert outcome.strategy == "b"


def test_trigger_needs_strategies():
    with pytest.raises(ValueError):
        DownloadTrigger([])


def test_concurrent_downloads_use_distinct_references():
    registry = TransientReferenceRegistry()
    platform = FakePlatform(registry=registry)
    n = 20

    async def go():
        async with _client(_ok) as client:
            trigger = DownloadTrigger(default_strategies(platform, client=client, registry=registry))
            return await asyncio.gather(*(trigger.download(GRANT, "same.pdf") for _ in range(n)))

    outcomes = asyncio.run(go())

    assert all(o.status is DownloadStatus.DONE and o.strategy == "fetch" for o in outcomes)
    assert len(platform.saved) == n
    assert len(set(platform.handles)) == n
    assert max(platform.pending_seen) > 1
    assert registry.created == n
    assert registry.pending == 0
