from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any

import numpy as np

from videomute.errors import InvalidRangeError

DEFAULT_FADE_SECONDS = 0.1
# Boundaries snap to this grid so that 10.0 - 0.1 is reported as 9.9.
TIMESCALE = 600


@dataclass(frozen=True, slots=True)
class RampSegment:
    """Linear gain change from ``start_volume`` to ``end_volume`` over ``[start, end]``."""

    start_seconds: float
    end_seconds: float
    start_volume: float
    end_volume: float

    @property
    def duration_seconds(self) -> float:
        return self.end_seconds - self.start_seconds

    @property
    def is_constant(self) -> bool:
        return self.start_volume == self.end_volume


@dataclass(frozen=True, slots=True)
class VolumeRampPlan:
    """Volume envelope for one audio track; gain is 1.0 wherever no segment applies."""

    duration_seconds: float
    segments: tuple[RampSegment, ...]

    def gain_at(self, times: Any) -> Any:
        """Evaluate the envelope at one time or an array of times."""

        points = np.asarray(times, dtype=np.float64)
        flat = np.atleast_1d(points)
        gains = np.ones_like(flat)
        for segment in self.segments:
            mask = (flat >= segment.start_seconds) & (flat <= segment.end_seconds)
            if not mask.any():
                continue
            gains[mask] = np.interp(
                flat[mask],
                [segment.start_seconds, segment.end_seconds],
                [segment.start_volume, segment.end_volume],
            )
        if points.ndim == 0:
            return float(gains[0])
        return gains.reshape(points.shape)

    def to_volume_expression(self) -> str:
        """Render the plan as an expression for ffmpeg's ``volume`` filter (``eval=frame``)."""

        expression = "1"
        for segment in reversed(self.segments):
            start = _fmt(segment.start_seconds)
            end = _fmt(segment.end_seconds)
            if segment.is_constant:
                gain = _fmt(segment.start_volume)
            else:
                slope = (segment.end_volume - segment.start_volume) / segment.duration_seconds
                gain = f"{_fmt(segment.start_volume)}+({_fmt(slope)})*(t-{start})"
            expression = f"if(between(t,{start},{end}),{gain},{expression})"
        return expression

    def to_dict(self) -> dict[str, Any]:
        return {
            "duration_seconds": self.duration_seconds,
            "segments": [
                {
                    "start_seconds": segment.start_seconds,
                    "end_seconds": segment.end_seconds,
                    "start_volume": segment.start_volume,
                    "end_volume": segment.end_volume,
                }
                for segment in self.segments
            ],
        }


def build_ramp_plan(
    duration: float,
    start_seconds: float,
    end_seconds: float,
    fade_seconds: float = DEFAULT_FADE_SECONDS,
) -> VolumeRampPlan:
    """Compute the fade-out / hold / fade-in envelope that silences ``[start, end]``.

    Short linear ramps on either side avoid the click an abrupt gain cut makes.
    A ramp is only emitted where there is room for it inside ``[0, duration]``.
    """

    _validate_range(duration, start_seconds, end_seconds)
    fade = max(float(fade_seconds), 0.0)

    candidates: list[RampSegment] = []
    if start_seconds > fade:
        candidates.append(_segment(start_seconds - fade, start_seconds, 1.0, 0.0, duration))
    candidates.append(_segment(start_seconds, end_seconds, 0.0, 0.0, duration))
    if end_seconds < duration - fade:
        candidates.append(_segment(end_seconds, end_seconds + fade, 0.0, 1.0, duration))

    segments = tuple(
        segment
        for segment in candidates
        if segment.start_seconds >= 0
        and segment.end_seconds <= duration
        and segment.duration_seconds > 0
    )
    return VolumeRampPlan(duration_seconds=float(duration), segments=segments)


def _validate_range(duration: float, start_seconds: float, end_seconds: float) -> None:
    values = (duration, start_seconds, end_seconds)
    if not all(math.isfinite(value) for value in values):
        raise InvalidRangeError(f"Non-finite mute range: start={start_seconds} end={end_seconds} duration={duration}")
    if start_seconds < 0 or end_seconds < 0:
        raise InvalidRangeError(f"Mute range cannot be negative: [{start_seconds}, {end_seconds}]")
    if start_seconds >= end_seconds:
        raise InvalidRangeError(f"Mute start {start_seconds} must be before end {end_seconds}")
    if end_seconds > duration:
        raise InvalidRangeError(f"Mute end {end_seconds} exceeds duration {duration}")
    if _quantize(start_seconds) >= min(_quantize(end_seconds), duration):
        raise InvalidRangeError(f"Mute range [{start_seconds}, {end_seconds}] is shorter than one timeline tick")


def _segment(start: float, end: float, start_volume: float, end_volume: float, duration: float) -> RampSegment:
    return RampSegment(
        start_seconds=min(_quantize(start), duration),
        end_seconds=min(_quantize(end), duration),
        start_volume=start_volume,
        end_volume=end_volume,
    )


def _quantize(seconds: float) -> float:
    return round(seconds * TIMESCALE) / TIMESCALE


def _fmt(value: float) -> str:
    text = f"{value:.6f}".rstrip("0").rstrip(".")
    return "0" if text in {"", "-0"} else text
