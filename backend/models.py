from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional


@dataclass
class FileRecord:
    """A row of the `files` table. `path` is either an object key or, for
    older uploads, the full public URL the file was stored under."""

    id: str
    student_id: str
    name: str
    path: str
    type: str = ""
    description: Optional[str] = None
    uploaded_at: Optional[str] = None

    @classmethod
    def from_row(cls, row: dict) -> "FileRecord":
        return cls(
            id=str(row["id"]),
            student_id=str(row.get("student_id") or ""),
            name=row.get("name") or "",
            path=row.get("path") or "",
            type=row.get("type") or "",
            description=row.get("description"),
            uploaded_at=row.get("uploaded_at"),
        )


@dataclass
class AnnotatedFile:
    record: FileRecord
    type_tag: str
    icon: str


@dataclass(frozen=True)
class AccessGrant:
    key: str
    url: str
    source: str  # "signed" or "public"
    expires_at: Optional[datetime] = None
    ttl_seconds: Optional[int] = None


class DownloadStatus(str, Enum):
    DONE = "done"
    EXHAUSTED = "exhausted"


@dataclass
class StrategyAttempt:
    strategy: str
    succeeded: bool
    detail: str = ""


@dataclass
class DownloadOutcome:
    status: DownloadStatus
    strategy: Optional[str] = None
    filename_applied: bool = False
    attempts: List[StrategyAttempt] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.status is DownloadStatus.DONE
