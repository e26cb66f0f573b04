"""ffmpeg/ffprobe backed MediaToolkit.

Every tool call is an asyncio subprocess so a long transcode never blocks the
event loop that owns the registry.
"""

import asyncio
import json
import logging
import math
import shutil
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

from PIL import Image

from mediatrack.jobs.errors import StageError
from mediatrack.jobs.progress import StageDone, StageProgress, StageStream
from mediatrack.media.base import MediaProperties, MediaToolkit
from mediatrack.media.presets import Preset
from mediatrack.storage.workspace import JobWorkspace

logger = logging.getLogger(__name__)


def find_binary(name: str) -> str:
    path = shutil.which(name)
    if path is None:
        raise StageError("setup", f"{name} not found on PATH")
    return path


def _parse_rate(rate: Optional[str]) -> Optional[float]:
    """ffprobe frame rates come as fractions like ``30000/1001``."""
    if not rate:
        return None
    num, _, den = rate.partition("/")
    try:
        if den:
            return float(num) / float(den) if float(den) else None
        return float(num)
    except ValueError:
        return None


def _int_or_none(value) -> Optional[int]:
    try:
        return int(value) if value is not None else None
    except (TypeError, ValueError):
        return None


class FfmpegToolkit(MediaToolkit):
    def __init__(
        self,
        workspace: JobWorkspace,
        part_seconds: int = 300,
        thumbnail_size: Tuple[int, int] = (320, 240),
        ffmpeg_path: Optional[str] = None,
        ffprobe_path: Optional[str] = None,
    ):
        self._workspace = workspace
        self._part_seconds = part_seconds
        self._thumbnail_size = thumbnail_size
        self._ffmpeg = ffmpeg_path
        self._ffprobe = ffprobe_path

    @property
    def ffmpeg(self) -> str:
        if self._ffmpeg is None:
            self._ffmpeg = find_binary("ffmpeg")
        return self._ffmpeg

    @property
    def ffprobe(self) -> str:
        if self._ffprobe is None:
            self._ffprobe = find_binary("ffprobe")
        return self._ffprobe

    async def _run(self, stage: str, args: Sequence[str]) -> bytes:
        proc = await asyncio.create_subprocess_exec(
            *args,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        stdout, stderr = await proc.communicate()
        if proc.returncode != 0:
            tail = stderr.decode(errors="replace").strip().splitlines()[-1:] or ["unknown error"]
            raise StageError(stage, tail[0])
        return stdout

    async def analyze(self, path: Path) -> MediaProperties:
        out = await self._run("analyze", [
            self.ffprobe,
            "-v", "error",
            "-print_format", "json",
            "-show_format",
            "-show_streams",
            str(path),
        ])
        metadata = json.loads(out or b"{}")
        streams = metadata.get("streams", [])
        fmt = metadata.get("format", {})
        video = next((s for s in streams if s.get("codec_type") == "video"), None)
        audio = next((s for s in streams if s.get("codec_type") == "audio"), None)
        if video is None:
            raise StageError("analyze", f"No video stream in {path.name}")

        return MediaProperties(
            duration=float(fmt.get("duration") or 0.0),
            size=_int_or_none(fmt.get("size")) or 0,
            bitrate=_int_or_none(fmt.get("bit_rate")),
            video_codec=video.get("codec_name"),
            audio_codec=audio.get("codec_name") if audio else None,
            width=_int_or_none(video.get("width")),
            height=_int_or_none(video.get("height")),
            fps=_parse_rate(video.get("r_frame_rate")),
            audio_channels=_int_or_none(audio.get("channels")) if audio else None,
            audio_sample_rate=_int_or_none(audio.get("sample_rate")) if audio else None,
            extra={"format_name": fmt.get("format_name")},
        )

    async def transform(self, path: Path, job_id: str, preset: Preset) -> StageStream:
        properties = await self.analyze(path)
        duration = properties.duration
        output = self._workspace.path_for(job_id, f"processed-{job_id}.mp4")

        proc = await asyncio.create_subprocess_exec(
            self.ffmpeg,
            "-y",
            "-i", str(path),
            *preset.output_args(),
            "-progress", "pipe:1",
            "-nostats",
            str(output),
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        stderr_task = asyncio.create_task(proc.stderr.read())

        last = 0.0
        async for raw in proc.stdout:
            key, _, value = raw.decode(errors="replace").strip().partition("=")
            if key not in ("out_time_us", "out_time_ms") or not duration:
                continue
            try:
                # ffmpeg reports out_time_ms in microseconds as well
                seconds = int(value) / 1_000_000
            except ValueError:
                continue
            percent = min(100.0, seconds / duration * 100.0)
            if percent > last:
                last = percent
                yield StageProgress(percent)

        returncode = await proc.wait()
        stderr = await stderr_task
        if returncode != 0:
            tail = stderr.decode(errors="replace").strip().splitlines()[-1:] or ["unknown error"]
            raise StageError("transform", tail[0])
        if last < 100.0:
            yield StageProgress(100.0)
        yield StageDone(output)

    async def split(self, path: Path, job_id: str, duration: float) -> List[Path]:
        if duration <= 0:
            duration = (await self.analyze(path)).duration
        count = max(1, math.ceil(duration / self._part_seconds))
        parts: List[Path] = []
        for index in range(count):
            start = index * self._part_seconds
            length = min(self._part_seconds, duration - start)
            part = self._workspace.path_for(job_id, f"part-{index + 1}-{job_id}.mp4")
            await self._run("split", [
                self.ffmpeg,
                "-y",
                "-ss", f"{start:.3f}",
                "-i", str(path),
                "-t", f"{length:.3f}",
                "-c", "copy",
                "-movflags", "+faststart",
                str(part),
            ])
            parts.append(part)
        logger.info(f"Job {job_id}: split {path.name} into {len(parts)} part(s)")
        return parts

    async def capture_thumbnail(self, path: Path, job_id: str, offset: float) -> Path:
        frame = self._workspace.path_for(job_id, f"frame-{job_id}.png")
        thumbnail = self._workspace.path_for(job_id, f"thumbnail-{job_id}.jpg")
        await self._run("thumbnail", [
            self.ffmpeg,
            "-y",
            "-ss", f"{max(offset, 0.0):.3f}",
            "-i", str(path),
            "-frames:v", "1",
            str(frame),
        ])
        loop = asyncio.get_event_loop()
        await loop.run_in_executor(None, self._shrink, frame, thumbnail)
        frame.unlink(missing_ok=True)
        return thumbnail

    def _shrink(self, frame: Path, thumbnail: Path) -> None:
        with Image.open(frame) as img:
            img = img.convert("RGB")
            img.thumbnail(self._thumbnail_size, Image.LANCZOS)
            img.save(thumbnail, "JPEG", quality=85)
