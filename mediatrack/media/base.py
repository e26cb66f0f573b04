"""Media toolkit interface and the data it returns."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from mediatrack.jobs.progress import StageStream
from mediatrack.media.presets import Preset


@dataclass
class MediaProperties:
    """Technical properties reported by media analysis."""
    duration: float
    size: int
    bitrate: Optional[int] = None
    video_codec: Optional[str] = None
    audio_codec: Optional[str] = None
    width: Optional[int] = None
    height: Optional[int] = None
    fps: Optional[float] = None
    audio_channels: Optional[int] = None
    audio_sample_rate: Optional[int] = None
    extra: Dict[str, Any] = field(default_factory=dict)


class MediaToolkit(ABC):
    """Black-box media operations the local pipeline delegates to.

    To plug in another tool:
    1. Subclass MediaToolkit
    2. Implement analyze(), transform(), split(), capture_thumbnail()
    3. Pass an instance to LocalPipelineExecutor
    """

    @abstractmethod
    async def analyze(self, path: Path) -> MediaProperties:
        """Probe ``path``. Raises on unreadable or non-media input."""
        ...

    @abstractmethod
    def transform(self, path: Path, job_id: str, preset: Preset) -> StageStream:
        """Apply ``preset`` to ``path``.

        Yields StageProgress with non-decreasing percentages, then StageDone
        carrying the output Path.
        """
        ...

    @abstractmethod
    async def split(self, path: Path, job_id: str, duration: float) -> List[Path]:
        """Cut ``path`` into ordered parts. Returns part paths in playback order."""
        ...

    @abstractmethod
    async def capture_thumbnail(self, path: Path, job_id: str, offset: float) -> Path:
        """Grab one frame ``offset`` seconds into ``path`` as an image."""
        ...
