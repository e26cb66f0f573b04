"""Shared fakes for the external collaborators."""

from pathlib import Path
from typing import Dict, List, Optional

import pytest

from mediatrack.github.notifier import JobNotifier
from mediatrack.github.store import VersionedStore
from mediatrack.jobs.errors import RemoteStoreError, StageError, UploadError
from mediatrack.jobs.models import JobRecord
from mediatrack.jobs.progress import StageDone, StageProgress
from mediatrack.media.base import MediaProperties, MediaToolkit
from mediatrack.storage.uploader import ArtifactUploader, build_result


class FakeToolkit(MediaToolkit):
    def __init__(
        self,
        workdir: Path,
        output_bytes: int = 1024,
        transform_steps=(25.0, 50.0, 75.0),
        duration: float = 600.0,
        fail_stage: Optional[str] = None,
        fail_message: str = "boom",
        parts: int = 2,
    ):
        self.workdir = workdir
        self.output_bytes = output_bytes
        self.transform_steps = transform_steps
        self.duration = duration
        self.fail_stage = fail_stage
        self.fail_message = fail_message
        self.parts = parts
        self.calls: List[str] = []

    def _maybe_fail(self, stage: str):
        if self.fail_stage == stage:
            raise StageError(stage, self.fail_message)

    async def analyze(self, path):
        self.calls.append("analyze")
        self._maybe_fail("analyze")
        return MediaProperties(duration=self.duration, size=path.stat().st_size)

    async def transform(self, path, job_id, preset):
        self.calls.append("transform")
        for step in self.transform_steps:
            yield StageProgress(step)
        self._maybe_fail("transform")
        output = self.workdir / f"processed-{job_id}.mp4"
        output.write_bytes(b"\0" * self.output_bytes)
        yield StageDone(output)

    async def split(self, path, job_id, duration):
        self.calls.append("split")
        self._maybe_fail("split")
        parts = []
        for index in range(self.parts):
            part = self.workdir / f"part-{index + 1}-{job_id}.mp4"
            part.write_bytes(b"\0" * 10)
            parts.append(part)
        return parts

    async def capture_thumbnail(self, path, job_id, offset):
        self.calls.append("thumbnail")
        self.thumbnail_offset = offset
        self._maybe_fail("thumbnail")
        thumb = self.workdir / f"thumbnail-{job_id}.jpg"
        thumb.write_bytes(b"jpg")
        return thumb


class FakeUploader(ArtifactUploader):
    def __init__(self, fail_after: Optional[int] = None):
        self.fail_after = fail_after
        self.uploaded: List[tuple] = []

    async def upload(self, job_id, items):
        urls = []
        for done, item in enumerate(items, start=1):
            if self.fail_after is not None and done > self.fail_after:
                raise UploadError(f"Upload of {item.path.name} failed: quota exceeded")
            url = f"https://cdn.example.com/{job_id}/{item.path.name}"
            self.uploaded.append((item.kind, item.path.name))
            urls.append((item.kind, url))
            yield StageProgress(done / len(items) * 100.0)
        yield StageDone(build_result(urls))


class FakeStore(VersionedStore):
    def __init__(self, fail_writes: bool = False):
        self.files: Dict[str, bytes] = {}
        self.messages: List[str] = []
        self.reads: List[str] = []
        self.fail_writes = fail_writes

    async def write_file(self, path, data, message):
        if self.fail_writes:
            raise RemoteStoreError("GitHub API error during commit: 403 — forbidden", 403)
        self.files[path] = data
        self.messages.append(message)

    async def read_file(self, path):
        self.reads.append(path)
        return self.files.get(path)


class RecordingNotifier(JobNotifier):
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.completed: List[str] = []
        self.failed: List[tuple] = []

    async def job_completed(self, job: JobRecord) -> None:
        self.completed.append(job.id)
        if self.fail:
            raise RuntimeError("issue tracker unavailable")

    async def job_failed(self, job: JobRecord, error: str) -> None:
        self.failed.append((job.id, error))
        if self.fail:
            raise RuntimeError("issue tracker unavailable")


def drain(subscription) -> list:
    events = []
    while subscription.pending():
        events.append(subscription.get_nowait())
    return events


@pytest.fixture
def source_file(tmp_path) -> Path:
    path = tmp_path / "input.mp4"
    path.write_bytes(b"fake video bytes")
    return path


@pytest.fixture
def workdir(tmp_path) -> Path:
    path = tmp_path / "work"
    path.mkdir()
    return path
