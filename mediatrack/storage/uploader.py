"""Artifact upload to object storage."""

import asyncio
import logging
import mimetypes
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from functools import partial
from pathlib import Path
from typing import Dict, List, Optional

from mediatrack.jobs.errors import UploadError
from mediatrack.jobs.models import JobResult
from mediatrack.jobs.progress import StageDone, StageProgress, StageStream

logger = logging.getLogger(__name__)


class ArtifactKind(str, Enum):
    VIDEO = "video"
    VIDEO_PART = "video_part"
    THUMBNAIL = "thumbnail"


@dataclass
class UploadItem:
    path: Path
    kind: ArtifactKind


# Remote folder per artifact kind
_FOLDERS: Dict[ArtifactKind, str] = {
    ArtifactKind.VIDEO: "videos/processed",
    ArtifactKind.VIDEO_PART: "videos/processed",
    ArtifactKind.THUMBNAIL: "thumbnails",
}


def build_result(urls: List[tuple]) -> JobResult:
    """Fold ``(kind, url)`` pairs, in upload order, into a JobResult.

    With parts and no single video, the first part doubles as the primary URL.
    """
    primary: Optional[str] = None
    thumbnail: Optional[str] = None
    parts: List[str] = []
    for kind, url in urls:
        if kind == ArtifactKind.VIDEO:
            primary = url
        elif kind == ArtifactKind.VIDEO_PART:
            parts.append(url)
        elif kind == ArtifactKind.THUMBNAIL:
            thumbnail = url
    if primary is None and parts:
        primary = parts[0]
    return JobResult(primary_artifact_url=primary, thumbnail_url=thumbnail, part_urls=parts)


class ArtifactUploader(ABC):
    """Uploads a job's artifacts and resolves their public URLs.

    A call either yields a complete JobResult or raises; partial uploads are
    never reported.
    """

    @abstractmethod
    def upload(self, job_id: str, items: List[UploadItem]) -> StageStream:
        """Yield StageProgress per uploaded item, then StageDone(JobResult)."""
        ...


class SupabaseUploader(ArtifactUploader):
    """Uploads into a Supabase Storage bucket with public URLs."""

    def __init__(self, bucket_factory=None):
        if bucket_factory is None:
            from mediatrack.storage.supabase_client import get_bucket
            bucket_factory = get_bucket
        self._bucket_factory = bucket_factory

    async def upload(self, job_id: str, items: List[UploadItem]) -> StageStream:
        if not items:
            raise UploadError("Nothing to upload")

        loop = asyncio.get_event_loop()
        try:
            bucket = self._bucket_factory()
        except RuntimeError as exc:
            raise UploadError(str(exc)) from exc

        urls = []
        for done, item in enumerate(items, start=1):
            remote_path = f"{_FOLDERS[item.kind]}/{job_id}/{item.path.name}"
            try:
                url = await loop.run_in_executor(
                    None, partial(self._put, bucket, item.path, remote_path)
                )
            except Exception as exc:
                logger.error(f"Upload of {item.kind.value} {item.path.name} failed: {exc}")
                raise UploadError(f"Upload of {item.path.name} failed: {exc}") from exc
            urls.append((item.kind, url))
            yield StageProgress(done / len(items) * 100.0)

        yield StageDone(build_result(urls))

    @staticmethod
    def _put(bucket, path: Path, remote_path: str) -> str:
        content_type = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
        with open(path, "rb") as fh:
            bucket.upload(
                path=remote_path,
                file=fh.read(),
                file_options={"content-type": content_type, "upsert": "true"},
            )
        return bucket.get_public_url(remote_path)
