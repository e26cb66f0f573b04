"""Processing preset applied by the transform stage."""

import json
import logging
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger(__name__)


class Preset(BaseModel):
    """Output encoding parameters. Keys may use the camelCase names of preset JSON files."""
    model_config = ConfigDict(populate_by_name=True)

    video_codec: str = Field(default="libx264", alias="videoCodec")
    audio_codec: str = Field(default="aac", alias="audioCodec")
    resolution: str = "1280x720"
    bitrate: int = 2500  # kbit/s
    fps: float = 30
    audio_channels: int = Field(default=2, alias="audioChannels")
    audio_sample_rate: int = Field(default=44100, alias="audioSampleRate")
    extra_output_options: List[str] = Field(
        default_factory=lambda: ["-preset", "slow", "-crf", "18", "-movflags", "+faststart"],
        alias="extraOutputOptions",
    )

    def output_args(self) -> List[str]:
        """ffmpeg output arguments for this preset."""
        return [
            "-c:v", self.video_codec,
            "-c:a", self.audio_codec,
            "-s", self.resolution,
            "-b:v", f"{self.bitrate}k",
            "-r", str(self.fps),
            "-ac", str(self.audio_channels),
            "-ar", str(self.audio_sample_rate),
            *self.extra_output_options,
        ]


def load_preset(path: Optional[str]) -> Preset:
    """Load a preset JSON file, falling back to defaults when no path is set."""
    if not path:
        return Preset()
    preset_file = Path(path)
    if not preset_file.exists():
        logger.warning(f"Preset file {path} not found, using default preset")
        return Preset()
    with open(preset_file, "r", encoding="utf-8") as fh:
        return Preset.model_validate(json.load(fh))
