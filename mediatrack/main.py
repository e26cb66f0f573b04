"""mediatrack - media processing job service (FastAPI application)."""

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from mediatrack.config import settings
from mediatrack.api.v1.router import v1_router
from mediatrack.api.v1 import events as events_api
from mediatrack.api.v1 import github as github_api
from mediatrack.api.v1 import jobs as jobs_api
from mediatrack.github.notifier import GitHubIssueNotifier, JobNotifier, NullNotifier
from mediatrack.github.store import GitHubStore
from mediatrack.jobs.broadcaster import EventBroadcaster
from mediatrack.jobs.dispatcher import ExecutionDispatcher, parse_mode
from mediatrack.jobs.local_pipeline import LocalPipelineExecutor
from mediatrack.jobs.models import ExecutionMode
from mediatrack.jobs.registry import JobRegistry
from mediatrack.jobs.remote_queue import RemoteQueueExecutor, RemoteResultReader
from mediatrack.media.ffmpeg import FfmpegToolkit
from mediatrack.media.presets import load_preset
from mediatrack.storage.uploader import SupabaseUploader
from mediatrack.storage.workspace import JobWorkspace

logger = logging.getLogger(__name__)


@dataclass
class Services:
    registry: JobRegistry
    dispatcher: ExecutionDispatcher
    store: GitHubStore
    result_reader: RemoteResultReader
    workspace: JobWorkspace


def build_services() -> Services:
    """Wire the registry, broadcaster, executors and collaborators from settings."""
    broadcaster = EventBroadcaster()
    registry = JobRegistry(broadcaster)
    workspace = JobWorkspace(settings.work_dir, ttl_hours=settings.work_ttl_hours)
    store = GitHubStore(
        token=settings.github_token,
        repo=settings.github_repo,
        branch=settings.github_branch,
    )

    notifier: JobNotifier = NullNotifier()
    if settings.github_issue_notifications and store.enabled:
        notifier = GitHubIssueNotifier(store)

    local = LocalPipelineExecutor(
        registry,
        toolkit=FfmpegToolkit(
            workspace,
            part_seconds=settings.split_part_seconds,
            thumbnail_size=(settings.thumbnail_width, settings.thumbnail_height),
        ),
        uploader=SupabaseUploader(),
        preset=load_preset(settings.preset_path),
        max_output_bytes=settings.max_output_bytes,
        thumbnail_offset=settings.thumbnail_offset,
        notifier=notifier,
        results_store=store if store.enabled else None,
        workers=settings.local_workers,
    )
    remote = RemoteQueueExecutor(
        registry, store, queued_progress=settings.remote_queued_progress
    )
    dispatcher = ExecutionDispatcher(
        registry,
        {ExecutionMode.LOCAL: local, ExecutionMode.REMOTE: remote},
        mode=parse_mode(settings.processing_mode),
    )
    return Services(
        registry=registry,
        dispatcher=dispatcher,
        store=store,
        result_reader=RemoteResultReader(store),
        workspace=workspace,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown logic."""
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    services = build_services()
    logger.info(f"Starting mediatrack on port {settings.compute_port}")
    logger.info(f"Processing mode: {services.dispatcher.mode.value}")
    logger.info(f"Upload dir: {settings.upload_dir}, work dir: {settings.work_dir}")

    await services.dispatcher.start()
    await services.registry.broadcaster.start_stats(
        services.registry.stats, settings.stats_interval_seconds
    )
    if services.store.enabled:
        await services.store.test_connection()

    # Wire services into API endpoints
    jobs_api.set_dispatcher(services.dispatcher)
    jobs_api.set_result_reader(services.result_reader)
    jobs_api.set_workspace(services.workspace)
    events_api.set_registry(services.registry)
    github_api.set_store(services.store)
    app.state.services = services

    yield

    logger.info("Shutting down mediatrack")
    await services.registry.broadcaster.stop_stats()
    await services.dispatcher.stop()
    await services.store.close()
    services.workspace.cleanup_expired()


app = FastAPI(
    title="mediatrack",
    description="Media processing jobs with real-time progress",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(v1_router)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("mediatrack.main:app", host="0.0.0.0", port=settings.compute_port)
