import asyncio
import json

import pytest

from conftest import FakeStore, drain
from mediatrack.jobs.broadcaster import EventBroadcaster
from mediatrack.jobs.dispatcher import ExecutionDispatcher, JobExecutor, parse_mode
from mediatrack.jobs.errors import PollTimeoutError, RemoteStoreError
from mediatrack.jobs.models import (
    EventKind,
    ExecutionMode,
    JobRecord,
    JobResult,
    JobStatus,
)
from mediatrack.jobs.poller import ResultPoller
from mediatrack.jobs.registry import JobRegistry
from mediatrack.jobs.remote_queue import RemoteQueueExecutor, RemoteResultReader


class IdleExecutor(JobExecutor):
    def __init__(self):
        self.submitted = []

    async def submit(self, job):
        self.submitted.append(job.id)


async def no_sleep(_seconds):
    return None


def make_dispatcher(store, mode=ExecutionMode.REMOTE):
    registry = JobRegistry(EventBroadcaster())
    local = IdleExecutor()
    dispatcher = ExecutionDispatcher(
        registry,
        {
            ExecutionMode.LOCAL: local,
            ExecutionMode.REMOTE: RemoteQueueExecutor(registry, store, queued_progress=15),
        },
        mode=mode,
    )
    return registry, dispatcher, local


def test_parse_mode():
    assert parse_mode("local") == ExecutionMode.LOCAL
    assert parse_mode("GitHub") == ExecutionMode.REMOTE
    assert parse_mode("remote") == ExecutionMode.REMOTE
    with pytest.raises(ValueError):
        parse_mode("cluster")


def test_remote_job_is_committed_and_queued(source_file):
    async def scenario():
        store = FakeStore()
        registry, dispatcher, local = make_dispatcher(store)

        job = await dispatcher.submit(
            JobRecord(id="J2", original_name="clip.mp4", source_path=str(source_file))
        )

        assert job.status == JobStatus.PROCESSING
        assert job.progress == 15
        assert job.execution_mode == ExecutionMode.REMOTE
        assert store.files["uploads/J2.mp4"] == b"fake video bytes"
        assert store.messages == ["Upload video clip.mp4 (id: J2)"]
        assert local.submitted == []
        assert not source_file.exists()

    asyncio.run(scenario())


def test_store_write_failure_fails_creation(source_file):
    async def scenario():
        store = FakeStore(fail_writes=True)
        registry, dispatcher, _ = make_dispatcher(store)

        with pytest.raises(RemoteStoreError):
            await dispatcher.submit(
                JobRecord(id="J5", original_name="clip.mp4", source_path=str(source_file))
            )

        assert await registry.list_by_status(JobStatus.PROCESSING) == []
        job = await registry.get("J5")
        assert job.status == JobStatus.ERROR
        assert "403" in job.error_message

    asyncio.run(scenario())


def test_mode_is_bound_at_creation(source_file):
    async def scenario():
        store = FakeStore()
        registry, dispatcher, local = make_dispatcher(store, mode=ExecutionMode.LOCAL)
        first = await dispatcher.submit(JobRecord(id="a", original_name="a.mp4"))

        dispatcher.mode = ExecutionMode.REMOTE
        second = await dispatcher.submit(
            JobRecord(id="b", original_name="b.mp4", source_path=str(source_file))
        )

        assert local.submitted == ["a"]
        assert (await registry.get("a")).execution_mode == ExecutionMode.LOCAL
        assert first.status == JobStatus.UPLOADED
        assert second.execution_mode == ExecutionMode.REMOTE

    asyncio.run(scenario())


def test_poller_reconciles_after_fourth_attempt(source_file):
    async def scenario():
        store = FakeStore()
        registry, dispatcher, _ = make_dispatcher(store)
        sub = registry.broadcaster.open()
        registry.watch_all(sub)

        await dispatcher.submit(
            JobRecord(id="J2", original_name="clip.mp4", source_path=str(source_file))
        )
        assert (await registry.get("J2")).progress == 15

        reader = RemoteResultReader(store)
        payload = {
            "videoInfo": {"id": "J2"},
            "results": {
                "videoUrl": "https://cdn.example.com/J2.mp4",
                "thumbnailUrl": "https://cdn.example.com/J2.jpg",
                "videoParts": [],
            },
        }
        calls = []

        async def fetch(job_id):
            calls.append(job_id)
            if len(calls) == 4:
                store.files["results/J2.json"] = json.dumps(payload).encode()
            return await reader.fetch(job_id)

        poller = ResultPoller(fetch, interval=15, max_attempts=80, sleep=no_sleep)
        result = await poller.poll("J2", on_result=registry.update_result)

        assert len(calls) == 4
        assert result.primary_artifact_url == "https://cdn.example.com/J2.mp4"
        job = await registry.get("J2")
        assert job.status == JobStatus.COMPLETED
        assert job.progress == 100
        assert job.result == result
        assert store.reads == ["results/J2.json"] * 4

        kinds = [e.kind for e in drain(sub)]
        assert kinds == [
            EventKind.SNAPSHOT,
            EventKind.CREATED,
            EventKind.UPDATED,
            EventKind.COMPLETED,
        ]

    asyncio.run(scenario())


def test_poller_times_out_without_touching_job(source_file):
    async def scenario():
        store = FakeStore()
        registry, dispatcher, _ = make_dispatcher(store)
        await dispatcher.submit(
            JobRecord(id="J6", original_name="clip.mp4", source_path=str(source_file))
        )
        reader = RemoteResultReader(store)
        sleeps = []

        async def record_sleep(seconds):
            sleeps.append(seconds)

        poller = ResultPoller(reader.fetch, interval=15, max_attempts=3, sleep=record_sleep)
        with pytest.raises(PollTimeoutError) as excinfo:
            await poller.poll("J6", on_result=registry.update_result)

        assert excinfo.value.attempts == 3
        assert len(store.reads) == 3
        assert sleeps == [15, 15, 15]
        assert poller.timeout == 45
        job = await registry.get("J6")
        assert job.status == JobStatus.PROCESSING
        assert job.progress == 15

    asyncio.run(scenario())


def test_poller_treats_read_errors_as_failed_attempts():
    async def scenario():
        calls = []

        async def flaky(job_id):
            calls.append(job_id)
            if len(calls) < 3:
                raise RemoteStoreError("GitHub HTTP error: timeout")
            return JobResult(primary_artifact_url="https://cdn.example.com/x.mp4")

        poller = ResultPoller(flaky, interval=0, max_attempts=5, sleep=no_sleep)
        result = await poller.poll("x")
        assert len(calls) == 3
        assert result.primary_artifact_url.endswith("x.mp4")

    asyncio.run(scenario())


def test_cancelling_poller_leaves_registry_alone(source_file):
    async def scenario():
        store = FakeStore()
        registry, dispatcher, _ = make_dispatcher(store)
        await dispatcher.submit(
            JobRecord(id="J7", original_name="clip.mp4", source_path=str(source_file))
        )
        poller = ResultPoller(RemoteResultReader(store).fetch, interval=10, max_attempts=5)
        task = asyncio.create_task(poller.poll("J7", on_result=registry.update_result))
        await asyncio.sleep(0)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        job = await registry.get("J7")
        assert job.status == JobStatus.PROCESSING

    asyncio.run(scenario())


def test_result_payload_shapes():
    flat = JobResult.from_payload({"videoUrl": "v", "thumbnailUrl": "t", "videoParts": ["p1"]})
    nested = JobResult.from_payload({"result": {"primary_artifact_url": "v", "part_urls": ["p1"]}})
    assert flat.primary_artifact_url == nested.primary_artifact_url == "v"
    assert flat.part_urls == nested.part_urls == ["p1"]
    assert flat.thumbnail_url == "t"


def test_concurrent_polls_count_attempts_separately():
    async def scenario():
        calls = {"fast": 0, "slow": 0}

        async def fetch(job_id):
            calls[job_id] += 1
            if job_id == "fast" and calls[job_id] == 2:
                return JobResult(primary_artifact_url="https://cdn.example.com/fast.mp4")
            return None

        async def yield_sleep(_seconds):
            await asyncio.sleep(0)

        poller = ResultPoller(fetch, interval=15, max_attempts=4, sleep=yield_sleep)
        fast, slow = await asyncio.gather(
            poller.poll("fast"), poller.poll("slow"), return_exceptions=True
        )

        assert fast.primary_artifact_url.endswith("fast.mp4")
        assert isinstance(slow, PollTimeoutError)
        assert slow.attempts == 4
        assert calls == {"fast": 2, "slow": 4}

    asyncio.run(scenario())
