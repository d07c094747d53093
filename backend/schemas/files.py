from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel

from backend.models import AccessGrant, AnnotatedFile, DownloadOutcome


class FileItem(BaseModel):
    id: str
    name: str
    path: str
    type: str
    icon: str
    description: Optional[str] = None
    uploaded_at: Optional[str] = None

    @classmethod
    def from_annotated(cls, f: AnnotatedFile) -> "FileItem":
        r = f.record
        return cls(
            id=r.id,
            name=r.name,
            path=r.path,
            type=f.type_tag,
            icon=f.icon,
            description=r.description,
            uploaded_at=r.uploaded_at,
        )


class FileListResponse(BaseModel):
    files: List[FileItem]
    types: List[str]


class TypeListResponse(BaseModel):
    types: List[str]


class AccessURLResponse(BaseModel):
    url: str
    source: str
    expires_at: Optional[datetime] = None

    @classmethod
    def from_grant(cls, grant: AccessGrant) -> "AccessURLResponse":
        return cls(url=grant.url, source=grant.source, expires_at=grant.expires_at)


class AttemptItem(BaseModel):
    strategy: str
    succeeded: bool
    detail: str


class DownloadResponse(BaseModel):
    status: str
    strategy: Optional[str] = None
    filename_applied: bool
    attempts: List[AttemptItem]

    @classmethod
    def from_outcome(cls, outcome: DownloadOutcome) -> "DownloadResponse":
        return cls(
            status=outcome.status.value,
            strategy=outcome.strategy,
            filename_applied=outcome.filename_applied,
            attempts=[
                AttemptItem(strategy=a.strategy, succeeded=a.succeeded, detail=a.detail)
                for a in outcome.attempts
            ],
        )
