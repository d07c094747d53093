import logging

from fastapi import APIRouter, Depends, HTTPException, Query
from backend.dependencies import get_current_user
from backend.errors import AccessDenied, AllStrategiesExhausted
from backend.schemas.files import (
    AccessURLResponse,
    DownloadResponse,
    FileItem,
    FileListResponse,
    TypeListResponse,
)
from backend.services import file_service
from backend.services.download_platform import ResponsePlatform

logger = logging.getLogger("fileportal.routers.files")

router = APIRouter()


@router.get("/", response_model=FileListResponse)
async def list_files(
    search: str = Query("", description="Matches file name or description"),
    type: str = Query(file_service.ALL_TYPES, description="Type tag to keep, or 'all'"),
    user: dict = Depends(get_current_user),
):
    try:
        view, types = await file_service.list_files(user, search, type)
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to load files: {e}")

    return FileListResponse(files=[FileItem.from_annotated(f) for f in view], types=types)


@router.get("/types", response_model=TypeListResponse)
async def list_types(user: dict = Depends(get_current_user)):
    try:
        return TypeListResponse(types=await file_service.list_types(user))
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to load files: {e}")


@router.get("/{file_id}/access-url", response_model=AccessURLResponse)
async def get_access_url(file_id: str, user: dict = Depends(get_current_user)):
    """Fresh time-limited URL for the file; the caller downloads it itself."""
    try:
        _, grant = await file_service.get_access_grant(user, file_id)
        return AccessURLResponse.from_grant(grant)
    except ValueError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except AccessDenied as e:
        logger.warning("Access URL refused for file_id=%s: %s", file_id, e)
        raise HTTPException(status_code=403, detail="Unable to retrieve file")
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to create access URL: {e}")


@router.get("/{file_id}/download")
async def download_file(file_id: str, user: dict = Depends(get_current_user)):
    """The file itself as an attachment, or a redirect to its grant URL."""
    platform = ResponsePlatform()
    try:
        outcome = await file_service.download_file(user, file_id, platform=platform)
    except ValueError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except AccessDenied as e:
        logger.warning("Download refused for file_id=%s: %s", file_id, e)
        raise HTTPException(status_code=403, detail="Unable to retrieve file")
    except AllStrategiesExhausted as e:
        raise HTTPException(
            status_code=502,
            detail={
                "message": str(e),
                "download": DownloadResponse.from_outcome(e.outcome).model_dump(),
            },
        )
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Download failed: {e}")

    if platform.response is None:
        raise HTTPException(status_code=500, detail="Download failed: nothing to deliver")
    platform.response.headers["X-Download-Strategy"] = outcome.strategy
    return platform.response
