"""Job record data model and the event vocabulary published about it."""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional
from pydantic import AliasChoices, BaseModel, Field
import uuid


class JobStatus(str, Enum):
    UPLOADED = "uploaded"
    PROCESSING = "processing"
    COMPLETED = "completed"
    ERROR = "error"


TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.ERROR})


class ExecutionMode(str, Enum):
    LOCAL = "local"
    REMOTE = "remote"


class JobResult(BaseModel):
    """Public URLs produced for a finished job."""
    primary_artifact_url: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("primary_artifact_url", "videoUrl", "video_url"),
    )
    thumbnail_url: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("thumbnail_url", "thumbnailUrl"),
    )
    part_urls: List[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("part_urls", "videoParts", "video_parts"),
    )

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "JobResult":
        """Parse a result file written by a remote worker.

        Workers write either the flat result or wrap it under ``result`` /
        ``results`` next to the job metadata.
        """
        for key in ("results", "result"):
            nested = payload.get(key)
            if isinstance(nested, dict):
                return cls.model_validate(nested)
        return cls.model_validate(payload)


class JobRecord(BaseModel):
    """Tracks the lifecycle of one media-processing job."""
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    original_name: str
    filename: str = ""
    size: int = 0
    created_at: datetime = Field(default_factory=datetime.utcnow)
    status: JobStatus = JobStatus.UPLOADED
    progress: float = 0.0
    last_update: datetime = Field(default_factory=datetime.utcnow)
    error_message: Optional[str] = None
    result: Optional[JobResult] = None
    execution_mode: ExecutionMode = ExecutionMode.LOCAL
    source_path: Optional[str] = Field(default=None, exclude=True)
    completed_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def snapshot(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")


class JobStats(BaseModel):
    total: int = 0
    uploaded: int = 0
    processing: int = 0
    completed: int = 0
    error: int = 0
    active: int = 0


class EventKind(str, Enum):
    SNAPSHOT = "snapshot"
    CREATED = "created"
    UPDATED = "updated"
    COMPLETED = "completed"
    REMOVED = "removed"
    CLEARED = "cleared"
    STATS = "stats"


class JobEvent(BaseModel):
    """A single notification delivered to subscribers."""
    kind: EventKind
    job_id: Optional[str] = None
    job: Optional[JobRecord] = None
    jobs: Optional[List[JobRecord]] = None
    stats: Optional[JobStats] = None
    count: Optional[int] = None
    emitted_at: datetime = Field(default_factory=datetime.utcnow)

    def to_message(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)
