import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from backend.errors import AccessDenied
from backend.services.access_url import AccessURLProvider

from fakes import FakeBucket


def test_signed_url_is_preferred():
    bucket = FakeBucket()
    before = datetime.now(timezone.utc)

    grant = asyncio.run(AccessURLProvider(bucket).obtain_access_url("student-1/a.pdf"))

    assert grant.source == "signed"
    assert grant.url == bucket.signed_url
    assert grant.key == "student-1/a.pdf"
    assert grant.ttl_seconds == 300
    assert before + timedelta(seconds=299) <= grant.expires_at <= datetime.now(timezone.utc) + timedelta(seconds=300)
    assert bucket.calls == [("sign", "student-1/a.pdf", 300)]


def test_camel_case_signing_response_is_accepted():
    class CamelBucket(FakeBucket):
        def create_signed_url(self, path, expires_in):
            return {"signedUrl": "https://signed.example/a"}

    grant = asyncio.run(AccessURLProvider(CamelBucket()).obtain_access_url("a"))
    assert grant.url == "https://signed.example/a"


def test_signing_failure_falls_back_to_public_url():
    bucket = FakeBucket(sign_error=RuntimeError("permission revoked"))

    grant = asyncio.run(AccessURLProvider(bucket).obtain_access_url("a.pdf"))

    assert grant.source == "public"
    assert grant.url == bucket.public_url
    assert grant.expires_at is None
    assert [c[0] for c in bucket.calls] == ["sign", "public"]


def test_empty_signing_response_counts_as_failure():
    bucket = FakeBucket(signed_url=None)
    grant = asyncio.run(AccessURLProvider(bucket).obtain_access_url("a.pdf"))
    assert grant.source == "public"


def test_both_failing_raises_access_denied():
    bucket = FakeBucket(sign_error=RuntimeError("down"), public_error=RuntimeError("also down"))

    with pytest.raises(AccessDenied) as excinfo:
        asyncio.run(AccessURLProvider(bucket).obtain_access_url("a.pdf"))

    assert excinfo.value.key == "a.pdf"
    assert "Unable to retrieve file" in str(excinfo.value)


def test_empty_public_url_raises_access_denied():
    bucket = FakeBucket(sign_error=RuntimeError("down"), public_url="")
    with pytest.raises(AccessDenied):
        asyncio.run(AccessURLProvider(bucket).obtain_access_url("a.pdf"))


def test_grants_are_never_cached():
    bucket = FakeBucket()
    provider = AccessURLProvider(bucket, ttl_seconds=60)

    async def twice():
        await provider.obtain_access_url("a.pdf")
        await provider.obtain_access_url("a.pdf")

    asyncio.run(twice())
    assert bucket.calls == [("sign", "a.pdf", 60), ("sign", "a.pdf", 60)]
