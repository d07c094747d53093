import asyncio
import logging
import mimetypes
import os
import webbrowser
from abc import ABC, abstractmethod
from urllib.parse import parse_qsl, quote, urlencode, urlsplit, urlunsplit

import httpx
from fastapi.responses import RedirectResponse, Response

from backend.errors import RetrievalFailed
from backend.services.transient_refs import TransientReference

logger = logging.getLogger("fileportal.services.download_platform")


class DownloadPlatform(ABC):
    """Host capabilities the delivery strategies drive.

    Implementations signal a blocked action by raising; `open_new_context`
    may also return False when the host refuses to open anything.
    """

    @abstractmethod
    async def save_as(self, reference: TransientReference, suggested_name: str) -> None:
        """Save already fetched bytes under `suggested_name`."""

    @abstractmethod
    async def save_url(
        self, url: str, suggested_name: str, *, no_referrer: bool = True, no_opener: bool = True
    ) -> None:
        """Save the target of `url` directly, without a prior fetch."""

    @abstractmethod
    async def open_new_context(
        self, url: str, *, no_opener: bool = True, no_referrer: bool = True
    ) -> bool:
        """Open `url` somewhere else; the destination picks the file name."""


def _safe_name(suggested_name: str) -> str:
    name = os.path.basename((suggested_name or "").replace("\\", "/")).strip()
    if name in ("", ".", ".."):
        return "download"
    return name


class LocalDownloadPlatform(DownloadPlatform):
    """Saves into a directory on the machine running the backend.

    For in-process callers of `file_service.download_file`; the HTTP route
    delivers through `ResponsePlatform` instead.
    """

    def __init__(self, download_dir: str, client: httpx.AsyncClient | None = None,
                 open_browser=webbrowser.open_new_tab, timeout: float | None = 60.0):
        self.download_dir = download_dir
        self.client = client
        self.open_browser = open_browser
        self.timeout = timeout

    def _reserve_path(self, suggested_name: str) -> str:
        os.makedirs(self.download_dir, exist_ok=True)
        stem, ext = os.path.splitext(_safe_name(suggested_name))
        candidate = os.path.join(self.download_dir, stem + ext)
        n = 1
        while os.path.exists(candidate):
            candidate = os.path.join(self.download_dir, f"{stem} ({n}){ext}")
            n += 1
        return candidate

    def _write_sync(self, data: bytes, suggested_name: str) -> str:
        path = self._reserve_path(suggested_name)
        with open(path, "xb") as fh:
            try:
                fh.write(data)
            except BaseException:
                fh.close()
                _discard(path)
                raise
        return path

    async def save_as(self, reference: TransientReference, suggested_name: str) -> None:
        path = await asyncio.to_thread(self._write_sync, reference.data, suggested_name)
        logger.info("Saved %s (%d bytes) to %s", reference.handle, reference.size, path)

    async def save_url(
        self, url: str, suggested_name: str, *, no_referrer: bool = True, no_opener: bool = True
    ) -> None:
        # httpx never sends a Referer header on its own, which covers no_referrer
        client = self.client or httpx.AsyncClient(timeout=self.timeout, follow_redirects=True)
        path = None
        try:
            async with client.stream("GET", url) as response:
                if response.status_code >= 400:
                    raise RetrievalFailed(url, status_code=response.status_code)
                target = await asyncio.to_thread(self._reserve_path, suggested_name)
                fh = await asyncio.to_thread(open, target, "xb")
                path = target
                try:
                    async for chunk in response.aiter_bytes():
                        await asyncio.to_thread(fh.write, chunk)
                finally:
                    await asyncio.to_thread(fh.close)
        except BaseException:
            if path is not None:
                _discard(path)
            raise
        finally:
            if client is not self.client:
                await client.aclose()
        logger.info("Saved %s directly to %s", url.split("?", 1)[0], path)

    async def open_new_context(
        self, url: str, *, no_opener: bool = True, no_referrer: bool = True
    ) -> bool:
        opened = await asyncio.to_thread(self.open_browser, url)
        logger.debug("open_new_context(%s) -> %s", url.split("?", 1)[0], opened)
        return bool(opened)


def _content_disposition(filename: str) -> str:
    # same encoding starlette's FileResponse uses for non-ASCII names
    quoted = quote(filename)
    if quoted != filename:
        return f"attachment; filename*=utf-8''{quoted}"
    return f'attachment; filename="{filename}"'


def _with_download_hint(url: str, filename: str) -> str:
    """Append Supabase Storage's ``download`` parameter so the object is
    served as an attachment named `filename`."""
    parts = urlsplit(url)
    query = parse_qsl(parts.query, keep_blank_values=True)
    query = [(k, v) for k, v in query if k != "download"] + [("download", filename)]
    return urlunsplit(parts._replace(query=urlencode(query)))


class ResponsePlatform(DownloadPlatform):
    """The HTTP client that asked for the download is the device.

    Each capability prepares the response the route sends back instead of
    touching the server's disk: fetched bytes become an attachment, the
    link-based strategies become redirects carrying ``Referrer-Policy:
    no-referrer``. One instance serves exactly one request.
    """

    def __init__(self):
        self.response: Response | None = None

    async def save_as(self, reference: TransientReference, suggested_name: str) -> None:
        name = _safe_name(suggested_name)
        media_type = mimetypes.guess_type(name)[0] or "application/octet-stream"
        self.response = Response(
            content=reference.data,
            media_type=media_type,
            headers={"Content-Disposition": _content_disposition(name)},
        )
        logger.debug("Prepared %s (%d bytes) as attachment '%s'", reference.handle, reference.size, name)

    async def save_url(
        self, url: str, suggested_name: str, *, no_referrer: bool = True, no_opener: bool = True
    ) -> None:
        self.response = self._redirect(_with_download_hint(url, _safe_name(suggested_name)), no_referrer)

    async def open_new_context(
        self, url: str, *, no_opener: bool = True, no_referrer: bool = True
    ) -> bool:
        self.response = self._redirect(url, no_referrer)
        return True

    @staticmethod
    def _redirect(url: str, no_referrer: bool) -> RedirectResponse:
        headers = {"Referrer-Policy": "no-referrer"} if no_referrer else None
        return RedirectResponse(url, status_code=307, headers=headers)


def _discard(path: str) -> None:
    try:
        os.remove(path)
    except FileNotFoundError:
        pass
