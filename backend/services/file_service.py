import asyncio
import logging
import time
from typing import Iterable, List

import httpx

from backend.config import get_settings
from backend.db_client import get_db_client
from backend.dependencies import get_storage_bucket
from backend.errors import AllStrategiesExhausted
from backend.models import AccessGrant, AnnotatedFile, DownloadOutcome, FileRecord
from backend.services.access_url import AccessURLProvider
from backend.services.download_platform import DownloadPlatform, LocalDownloadPlatform
from backend.services.download_trigger import DownloadTrigger, default_strategies
from backend.services.path_resolver import resolve
from backend.services.type_classifier import classify, icon_category

logger = logging.getLogger("fileportal.services.file_service")

ALL_TYPES = "all"


# ── Listing ─────────────────────────────────────────────────────────────────

def annotate(record: FileRecord) -> AnnotatedFile:
    tag = classify(record.type, record.name)
    return AnnotatedFile(record=record, type_tag=tag, icon=icon_category(tag))


def derive_view(files: Iterable[AnnotatedFile], search_term: str = "", type_filter: str = ALL_TYPES) -> List[AnnotatedFile]:
    """Files matching the search box and type dropdown, in their original order."""
    view = list(files)

    needle = (search_term or "").lower()
    if needle:
        view = [
            f for f in view
            if needle in f.record.name.lower()
            or (f.record.description and needle in f.record.description.lower())
        ]

    if type_filter and type_filter != ALL_TYPES:
        view = [f for f in view if f.type_tag == type_filter]

    return view


def available_types(files: Iterable[AnnotatedFile]) -> List[str]:
    types = [ALL_TYPES]
    for f in files:
        if f.type_tag not in types:
            types.append(f.type_tag)
    return types


def _list_records_sync(access_token: str, user_id: str) -> List[FileRecord]:
    logger.debug("Querying files table for student_id=%s", user_id)
    with get_db_client(access_token) as db:
        rows = db.list_files(user_id)
    logger.debug("Found %d files for student_id=%s", len(rows), user_id)
    return [FileRecord.from_row(row) for row in rows]


async def list_all_files(user: dict) -> List[AnnotatedFile]:
    records = await asyncio.to_thread(_list_records_sync, user["access_token"], user["id"])
    return [annotate(r) for r in records]


async def list_files(user: dict, search: str = "", type_filter: str = ALL_TYPES) -> tuple[List[AnnotatedFile], List[str]]:
    """Returns the filtered view plus the type options of the unfiltered list."""
    logger.debug(
        "list_files called for user_id=%s — search='%s', type=%s",
        user["id"], search, type_filter,
    )
    files = await list_all_files(user)
    view = derive_view(files, search, type_filter)
    logger.debug("list_files returning %d of %d files for user_id=%s", len(view), len(files), user["id"])
    return view, available_types(files)


async def list_types(user: dict) -> List[str]:
    return available_types(await list_all_files(user))


# ── Access + download ───────────────────────────────────────────────────────

def _get_record_sync(access_token: str, user_id: str, file_id: str) -> FileRecord:
    with get_db_client(access_token) as db:
        row = db.get_file(file_id, user_id)
    if not row:
        logger.warning("File not found — file_id=%s for user_id=%s", file_id, user_id)
        raise ValueError("File not found")
    return FileRecord.from_row(row)


def get_access_provider(user: dict) -> AccessURLProvider:
    settings = get_settings()
    return AccessURLProvider(
        get_storage_bucket(user["access_token"]),
        ttl_seconds=settings.SIGNED_URL_TTL_SECONDS,
    )


def get_platform() -> DownloadPlatform:
    settings = get_settings()
    return LocalDownloadPlatform(settings.DOWNLOAD_DIR, timeout=settings.FETCH_TIMEOUT_SECONDS)


async def get_access_grant(user: dict, file_id: str, provider: AccessURLProvider | None = None) -> tuple[FileRecord, AccessGrant]:
    """Looks up the record and asks for a fresh grant. Raises ValueError / AccessDenied."""
    record = await asyncio.to_thread(_get_record_sync, user["access_token"], user["id"], file_id)
    key = resolve(record.path, get_settings().STORAGE_BUCKET)
    logger.debug("Downloading from storage path: %s (file_id=%s)", key, file_id)

    provider = provider or get_access_provider(user)
    grant = await provider.obtain_access_url(key)
    return record, grant


async def download_file(
    user: dict,
    file_id: str,
    platform: DownloadPlatform | None = None,
    provider: AccessURLProvider | None = None,
    client: httpx.AsyncClient | None = None,
) -> DownloadOutcome:
    logger.debug("download_file called — file_id=%s, user_id=%s", file_id, user["id"])
    start = time.perf_counter()

    record, grant = await get_access_grant(user, file_id, provider)

    settings = get_settings()
    trigger = DownloadTrigger(
        default_strategies(
            platform or get_platform(),
            client=client,
            timeout=settings.FETCH_TIMEOUT_SECONDS,
        )
    )
    outcome = await trigger.download(grant, record.name)
    elapsed_ms = (time.perf_counter() - start) * 1000

    if not outcome.succeeded:
        raise AllStrategiesExhausted(outcome)

    logger.info(
        "File '%s' (id=%s) delivered via %s in %.1fms for user_id=%s",
        record.name, file_id, outcome.strategy, elapsed_ms, user["id"],
    )
    return outcome
