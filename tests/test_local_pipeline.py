import asyncio
import json
import logging

from conftest import FakeStore, FakeToolkit, FakeUploader, RecordingNotifier, drain
from mediatrack.jobs.broadcaster import EventBroadcaster
from mediatrack.jobs.local_pipeline import LocalPipelineExecutor
from mediatrack.jobs.models import EventKind, JobRecord, JobStatus
from mediatrack.jobs.registry import JobRegistry
from mediatrack.storage.uploader import ArtifactKind


async def make_pipeline(source_file, toolkit, uploader=None, **kwargs):
    registry = JobRegistry(EventBroadcaster())
    executor = LocalPipelineExecutor(
        registry,
        toolkit=toolkit,
        uploader=uploader or FakeUploader(),
        **kwargs,
    )
    await registry.create(
        JobRecord(
            id="J1",
            original_name="clip.mp4",
            size=source_file.stat().st_size,
            source_path=str(source_file),
        )
    )
    sub = registry.broadcaster.open()
    await registry.watch(sub, "J1")
    return registry, executor, sub


def test_pipeline_runs_all_stages_and_completes(source_file, workdir):
    async def scenario():
        toolkit = FakeToolkit(workdir)
        notifier = RecordingNotifier()
        store = FakeStore()
        registry, executor, sub = await make_pipeline(
            source_file, toolkit, notifier=notifier, results_store=store
        )

        final = await executor.run("J1")

        assert toolkit.calls == ["analyze", "transform", "thumbnail"]
        assert final.status == JobStatus.COMPLETED
        assert final.progress == 100
        assert final.result.primary_artifact_url.endswith("processed-J1.mp4")
        assert final.result.thumbnail_url.endswith("thumbnail-J1.jpg")
        assert final.result.part_urls == []
        assert notifier.completed == ["J1"]
        committed = json.loads(store.files["results/J1.json"])
        assert committed["results"]["primary_artifact_url"] == final.result.primary_artifact_url
        assert not source_file.exists()

        events = drain(sub)
        assert events[0].kind == EventKind.SNAPSHOT
        assert events[-1].kind == EventKind.COMPLETED
        progress = [e.job.progress for e in events if e.kind == EventKind.UPDATED]
        assert progress == sorted(progress)
        assert 40.0 in progress  # transform at 50%
        statuses = [e.job.status for e in events[1:]]
        assert statuses[0] == JobStatus.PROCESSING
        assert statuses.count(JobStatus.COMPLETED) == 1

    asyncio.run(scenario())


def test_oversized_output_is_split_into_parts(source_file, workdir):
    async def scenario():
        toolkit = FakeToolkit(workdir, output_bytes=2048, parts=3)
        uploader = FakeUploader()
        registry, executor, _ = await make_pipeline(
            source_file, toolkit, uploader=uploader, max_output_bytes=1024
        )

        final = await executor.run("J1")

        assert toolkit.calls == ["analyze", "transform", "split", "thumbnail"]
        assert [kind for kind, _ in uploader.uploaded] == [
            ArtifactKind.VIDEO_PART,
            ArtifactKind.VIDEO_PART,
            ArtifactKind.VIDEO_PART,
            ArtifactKind.THUMBNAIL,
        ]
        assert len(final.result.part_urls) == 3
        assert final.result.primary_artifact_url == final.result.part_urls[0]

    asyncio.run(scenario())


def test_thumbnail_offset_is_clamped_for_short_media(source_file, workdir):
    async def scenario():
        toolkit = FakeToolkit(workdir, duration=1.0)
        _, executor, _ = await make_pipeline(source_file, toolkit, thumbnail_offset=2.0)
        await executor.run("J1")
        assert toolkit.thumbnail_offset == 0.5

    asyncio.run(scenario())


def test_transform_failure_marks_error_and_keeps_progress(source_file, workdir):
    async def scenario():
        toolkit = FakeToolkit(
            workdir, transform_steps=(), fail_stage="transform", fail_message="codec error"
        )
        notifier = RecordingNotifier()
        registry, executor, sub = await make_pipeline(source_file, toolkit, notifier=notifier)

        final = await executor.run("J1")

        assert final.status == JobStatus.ERROR
        assert final.error_message == "codec error"
        assert final.progress == 20
        assert final.result is None
        assert notifier.failed == [("J1", "codec error")]
        # input is left in place on failure
        assert source_file.exists()

        # a second run for the same id changes nothing
        assert (await executor.run("J1")).status == JobStatus.ERROR
        assert await registry.update_status("J1", JobStatus.PROCESSING, 50) is None
        statuses = [e.job.status for e in drain(sub)]
        assert statuses[-1] == JobStatus.ERROR
        assert statuses.count(JobStatus.ERROR) == 1

    asyncio.run(scenario())


def test_analysis_failure_aborts_job(source_file, workdir):
    async def scenario():
        toolkit = FakeToolkit(workdir, fail_stage="analyze", fail_message="moov atom not found")
        registry, executor, _ = await make_pipeline(source_file, toolkit)

        final = await executor.run("J1")

        assert toolkit.calls == ["analyze"]
        assert final.status == JobStatus.ERROR
        assert final.error_message == "moov atom not found"
        assert final.progress == 10

    asyncio.run(scenario())


def test_upload_failure_reports_no_partial_result(source_file, workdir):
    async def scenario():
        toolkit = FakeToolkit(workdir, output_bytes=2048, parts=3)
        registry, executor, _ = await make_pipeline(
            source_file,
            toolkit,
            uploader=FakeUploader(fail_after=1),
            max_output_bytes=1024,
        )

        final = await executor.run("J1")

        assert final.status == JobStatus.ERROR
        assert "quota exceeded" in final.error_message
        assert final.result is None
        assert 70 <= final.progress < 95

    asyncio.run(scenario())


def test_notifier_failures_never_change_job_status(source_file, workdir):
    async def scenario():
        toolkit = FakeToolkit(workdir)
        store = FakeStore(fail_writes=True)
        registry, executor, _ = await make_pipeline(
            source_file, toolkit, notifier=RecordingNotifier(fail=True), results_store=store
        )
        final = await executor.run("J1")
        assert final.status == JobStatus.COMPLETED

        failing = FakeToolkit(workdir, fail_stage="thumbnail", fail_message="no frame")
        registry2, executor2, _ = await make_pipeline(
            _recreate(source_file),
            failing,
            notifier=RecordingNotifier(fail=True),
        )
        failed = await executor2.run("J1")
        assert failed.status == JobStatus.ERROR
        assert failed.error_message == "no frame"

    asyncio.run(scenario())


def _recreate(path):
    path.write_bytes(b"fake video bytes")
    return path


def test_missing_input_fails_job(source_file, workdir):
    async def scenario():
        toolkit = FakeToolkit(workdir)
        registry, executor, _ = await make_pipeline(source_file, toolkit)
        source_file.unlink()

        final = await executor.run("J1")

        assert final.status == JobStatus.ERROR
        assert "Input artifact missing" in final.error_message
        assert toolkit.calls == []
        assert final.progress == 10

    asyncio.run(scenario())


def test_worker_loop_processes_submitted_jobs(source_file, workdir):
    async def scenario():
        toolkit = FakeToolkit(workdir)
        registry, executor, sub = await make_pipeline(source_file, toolkit)
        await executor.start()
        await executor.submit(await registry.get("J1"))

        async def wait_completed():
            async for event in sub:
                if event.kind == EventKind.COMPLETED:
                    return event

        done = await asyncio.wait_for(wait_completed(), timeout=5)
        await executor.stop()
        assert done.job.status == JobStatus.COMPLETED

    asyncio.run(scenario())


class RemovingUploader(FakeUploader):
    """Drops the job from the registry partway through its upload."""

    def __init__(self, registry):
        super().__init__()
        self.registry = registry

    async def upload(self, job_id, items):
        await self.registry.remove(job_id)
        async for event in super().upload(job_id, items):
            yield event


def test_job_removed_mid_run_is_not_reported_as_success(source_file, workdir, caplog):
    async def scenario():
        toolkit = FakeToolkit(workdir)
        notifier = RecordingNotifier()
        store = FakeStore()
        registry, executor, _ = await make_pipeline(
            source_file, toolkit, notifier=notifier, results_store=store
        )
        executor._uploader = RemovingUploader(registry)

        final = await executor.run("J1")

        assert final is None
        assert await registry.get("J1") is None
        assert notifier.completed == []
        assert store.files == {}
        assert not source_file.exists()

    with caplog.at_level(logging.INFO, logger="mediatrack.jobs.local_pipeline"):
        asyncio.run(scenario())
    messages = [r.getMessage() for r in caplog.records]
    assert any("no longer tracked" in m for m in messages)
    assert not any("processed successfully" in m for m in messages)
