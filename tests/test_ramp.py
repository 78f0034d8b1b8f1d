from __future__ import annotations

import math

import numpy as np
import pytest

from videomute.errors import InvalidRangeError
from videomute.mute.ramp import RampSegment, build_ramp_plan


def _as_tuples(segments: tuple[RampSegment, ...]) -> list[tuple[float, float, float, float]]:
    return [
        (segment.start_seconds, segment.end_seconds, segment.start_volume, segment.end_volume)
        for segment in segments
    ]


def test_mid_clip_range_gets_fade_out_hold_and_fade_in() -> None:
    plan = build_ramp_plan(60.0, 10.0, 20.0, fade_seconds=0.1)

    segments = _as_tuples(plan.segments)
    assert len(segments) == 3
    assert segments[0] == pytest.approx((9.9, 10.0, 1.0, 0.0))
    assert segments[1] == pytest.approx((10.0, 20.0, 0.0, 0.0))
    assert segments[2] == pytest.approx((20.0, 20.1, 0.0, 1.0))


def test_range_starting_at_zero_has_no_fade_out() -> None:
    plan = build_ramp_plan(60.0, 0.0, 5.0)

    segments = _as_tuples(plan.segments)
    assert segments == pytest.approx([(0.0, 5.0, 0.0, 0.0), (5.0, 5.1, 0.0, 1.0)])


def test_range_starting_exactly_at_fade_has_no_fade_out() -> None:
    plan = build_ramp_plan(60.0, 0.1, 5.0)

    assert plan.segments[0].start_volume == 0.0
    assert plan.segments[0].start_seconds == pytest.approx(0.1)


def test_range_reaching_the_end_has_no_fade_in() -> None:
    plan = build_ramp_plan(60.0, 50.0, 60.0)

    segments = _as_tuples(plan.segments)
    assert segments == pytest.approx([(49.9, 50.0, 1.0, 0.0), (50.0, 60.0, 0.0, 0.0)])


def test_range_ending_inside_last_fade_window_has_no_fade_in() -> None:
    plan = build_ramp_plan(60.0, 30.0, 59.95)

    assert plan.segments[-1].end_volume == 0.0
    assert plan.segments[-1].end_seconds == pytest.approx(59.95)


def test_whole_clip_range_is_a_single_hold() -> None:
    plan = build_ramp_plan(12.0, 0.0, 12.0)

    assert _as_tuples(plan.segments) == pytest.approx([(0.0, 12.0, 0.0, 0.0)])


@pytest.mark.parametrize(
    ("duration", "start", "end"),
    [
        (60.0, 10.0, 20.0),
        (60.0, 0.0, 0.1),
        (60.0, 0.05, 59.99),
        (3.0, 2.9, 3.0),
        (1.0, 0.0, 1.0),
        (7.5, 0.12, 0.33),
        (100.0, 99.8, 99.95),
        (60.0, 10.0, 10.002),
    ],
)
def test_segments_stay_inside_clip_and_always_hold_the_range(duration: float, start: float, end: float) -> None:
    plan = build_ramp_plan(duration, start, end)

    assert plan.segments
    for segment in plan.segments:
        assert 0.0 <= segment.start_seconds < segment.end_seconds <= duration
        assert 0.0 <= segment.start_volume <= 1.0
        assert 0.0 <= segment.end_volume <= 1.0

    for previous, current in zip(plan.segments, plan.segments[1:]):
        assert previous.end_seconds <= current.start_seconds + 1e-9

    holds = [segment for segment in plan.segments if segment.start_volume == 0.0 and segment.end_volume == 0.0]
    assert len(holds) == 1
    assert holds[0].start_seconds == pytest.approx(start, abs=1 / 600)
    assert holds[0].end_seconds == pytest.approx(end, abs=1 / 600)


@pytest.mark.parametrize(
    ("start", "end"),
    [
        (5.0, 5.0),
        (6.0, 5.0),
        (-1.0, 5.0),
        (10.0, 61.0),
        (math.nan, 5.0),
        (0.0, math.inf),
        (10.0, 10.0005),
    ],
)
def test_invalid_ranges_are_rejected(start: float, end: float) -> None:
    with pytest.raises(InvalidRangeError):
        build_ramp_plan(60.0, start, end)


def test_gain_at_samples_the_envelope() -> None:
    plan = build_ramp_plan(60.0, 10.0, 20.0)

    assert plan.gain_at(5.0) == pytest.approx(1.0)
    assert plan.gain_at(9.95) == pytest.approx(0.5, abs=1e-6)
    assert plan.gain_at(15.0) == pytest.approx(0.0)
    assert plan.gain_at(20.05) == pytest.approx(0.5, abs=1e-6)
    assert plan.gain_at(45.0) == pytest.approx(1.0)

    samples = plan.gain_at(np.array([[0.0, 15.0], [30.0, 10.0]]))
    assert samples.shape == (2, 2)
    assert samples.tolist() == pytest.approx([[1.0, 0.0], [1.0, 0.0]])


def test_volume_expression_nests_segments_in_time_order() -> None:
    plan = build_ramp_plan(60.0, 10.0, 20.0)

    expression = plan.to_volume_expression()

    assert expression.startswith("if(between(t,9.9,10),1+(")
    assert "if(between(t,10,20),0," in expression
    assert "if(between(t,20,20.1),0+(" in expression
    assert expression.endswith(",1)))")
    assert expression.count("(") == expression.count(")")


def test_to_dict_lists_segments() -> None:
    payload = build_ramp_plan(60.0, 0.0, 5.0).to_dict()

    assert payload["duration_seconds"] == 60.0
    assert [segment["start_volume"] for segment in payload["segments"]] == [0.0, 0.0]
    assert [segment["end_volume"] for segment in payload["segments"]] == [0.0, 1.0]
