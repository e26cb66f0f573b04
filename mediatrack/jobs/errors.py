"""Exception types shared by the job core and its collaborators."""

from typing import Optional


class MediaTrackError(Exception):
    """Base class for all mediatrack errors."""


class InputError(MediaTrackError):
    """Malformed or missing input artifact. Raised before any state transition."""

    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.status_code = status_code


class JobConflictError(MediaTrackError):
    """A job with the same id is already registered."""

    def __init__(self, job_id: str):
        super().__init__(f"Job {job_id} already exists")
        self.job_id = job_id


class StageError(MediaTrackError):
    """A delegated pipeline operation failed."""

    def __init__(self, stage: str, message: str):
        super().__init__(message)
        self.stage = stage


class RemoteStoreError(MediaTrackError):
    """Reading from or writing to the version-controlled store failed."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class StoreNotConfiguredError(RemoteStoreError):
    """The version-controlled store has no credentials or repository configured."""


class UploadError(MediaTrackError):
    """Artifact upload to object storage failed."""


class PollTimeoutError(MediaTrackError):
    """The result poller gave up before the remote worker produced a result."""

    def __init__(self, job_id: str, attempts: int):
        super().__init__(
            f"No result for job {job_id} after {attempts} attempt(s)"
        )
        self.job_id = job_id
        self.attempts = attempts
