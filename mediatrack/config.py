"""Application configuration via environment variables."""

from pydantic_settings import BaseSettings
from typing import List, Optional


class Settings(BaseSettings):
    # Execution strategy: "local" runs the ffmpeg pipeline in-process,
    # "remote" commits the upload to the GitHub repo for an Actions worker.
    processing_mode: str = "local"
    local_workers: int = 1

    # Directories
    upload_dir: str = "uploads"
    work_dir: str = "processed"
    work_ttl_hours: int = 24

    # Upload validation
    max_upload_bytes: int = 500_000_000
    allowed_extensions: List[str] = [".mp4", ".avi", ".mov", ".mkv", ".wmv", ".flv", ".webm"]

    # Media pipeline
    preset_path: Optional[str] = None
    max_output_bytes: int = 98_000_000
    split_part_seconds: int = 300
    thumbnail_offset: float = 2.0
    thumbnail_width: int = 320
    thumbnail_height: int = 240

    # Notification fabric
    stats_interval_seconds: float = 30.0

    # Remote queue + result polling
    remote_queued_progress: float = 15.0
    poll_interval_seconds: float = 15.0
    poll_max_attempts: int = 80

    # GitHub (remote store + issue notifications)
    github_token: Optional[str] = None
    github_repo: Optional[str] = None
    github_branch: str = "main"
    github_issue_notifications: bool = True

    # Supabase storage (artifact upload)
    supabase_url: str = ""
    supabase_service_role_key: str = ""
    supabase_bucket: str = "media"

    compute_port: int = 8001
    log_level: str = "INFO"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


settings = Settings()
