"""Maps stage-local progress onto the overall 0-100 job scale.

Every pipeline stage owns a fixed, disjoint slice of the scale, so an observer
can tell which stage a job is in from the reported number alone.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, AsyncIterator, Generic, Optional, Tuple, TypeVar, Union

T = TypeVar("T")


@dataclass
class StageProgress:
    """Stage-local progress, 0-100 within the reporting operation."""
    percent: float


@dataclass
class StageDone(Generic[T]):
    """Final item of a stage stream, carrying the operation's output."""
    value: T


# Long-running delegated operations yield StageProgress items and finish with
# exactly one StageDone. Failure is an exception raised from the iterator.
StageStream = AsyncIterator[Union[StageProgress, StageDone[Any]]]


class Stage(str, Enum):
    ANALYZE = "analyze"
    TRANSFORM = "transform"
    SPLIT = "split"
    THUMBNAIL = "thumbnail"
    UPLOAD = "upload"
    FINALIZE = "finalize"


STAGE_RANGES = {
    Stage.ANALYZE: (10.0, 20.0),
    Stage.TRANSFORM: (20.0, 60.0),
    Stage.SPLIT: (60.0, 65.0),
    Stage.THUMBNAIL: (65.0, 70.0),
    Stage.UPLOAD: (70.0, 95.0),
    Stage.FINALIZE: (95.0, 100.0),
}


def stage_range(stage: Stage) -> Tuple[float, float]:
    return STAGE_RANGES[stage]


def aggregate(stage: Stage, percent: float) -> float:
    """Overall job progress for ``percent`` (0-100) of ``stage``."""
    start, end = STAGE_RANGES[stage]
    percent = min(max(float(percent), 0.0), 100.0)
    overall = start + percent * (end - start) / 100.0
    return min(max(overall, start), end)


def stage_for(progress: float) -> Optional[Stage]:
    """The stage whose range contains ``progress``; None before the pipeline starts.

    Range boundaries belong to the later stage, except 100 which is FINALIZE.
    """
    if progress < STAGE_RANGES[Stage.ANALYZE][0]:
        return None
    found = None
    for stage, (start, _end) in STAGE_RANGES.items():
        if progress >= start:
            found = stage
    return found
