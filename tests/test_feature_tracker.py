from dataclasses import replace

import numpy as np
import pytest

from slam_fusion.config import FeatureTrackerConfig
from slam_fusion.errors import FrameDecodeError
from slam_fusion.vision.feature_tracker import (
    FeatureDetectionResult,
    FeaturePoint,
    FeatureTracker,
    corner_scores,
    decode_luma,
    flow_statistics,
)

WIDTH, HEIGHT = 160, 120


def textured_frame(shift_x=0, seed=0):
    """Random-dot texture, shifted right by ``shift_x`` pixels."""
    rng = np.random.default_rng(seed)
    base = (rng.random((HEIGHT, WIDTH + 64)) * 255).astype(np.uint8)
    return np.ascontiguousarray(base[:, 32 - shift_x : 32 - shift_x + WIDTH])


def make_matches(displacements, start=(40.0, 40.0)):
    matches = []
    for i, (dx, dy) in enumerate(displacements):
        prev = FeaturePoint(start[0] + i, start[1] + i, 30.0)
        cur = FeaturePoint(prev.x + dx, prev.y + dy, 30.0)
        matches.append((cur, prev))
    return matches


def test_decode_luma_rejects_short_buffer():
    with pytest.raises(FrameDecodeError):
        decode_luma(bytes(10), 4, 4)
    with pytest.raises(FrameDecodeError):
        decode_luma(bytes(16), 0, 4)
    with pytest.raises(FrameDecodeError):
        decode_luma(np.zeros(16, dtype=float), 4, 4)


def test_decode_luma_ignores_padding():
    image = decode_luma(bytes(range(20)), 4, 4)
    assert image.shape == (4, 4)
    assert image[3, 3] == 15


def test_corner_score_formula():
    image = np.zeros((7, 7), dtype=np.int32)
    image[3, 3] = 100
    # centre differs from all 6 neighbours by 100: (6 * 100) // 2
    assert corner_scores(image, [3], [3])[0] == 300
    # too close to the edge
    assert corner_scores(image, [1], [3])[0] == 0


def test_detect_on_flat_frame_finds_nothing():
    tracker = FeatureTracker()
    result = tracker.detect(bytes(WIDTH * HEIGHT), WIDTH, HEIGHT)
    assert result.feature_count == 0
    assert result.match_count == 0
    assert tracker.is_tracking


def test_detect_caps_and_orders_features():
    config = replace(FeatureTrackerConfig(), max_features=25)
    tracker = FeatureTracker(config)
    result = tracker.detect(textured_frame().tobytes(), WIDTH, HEIGHT)
    assert 0 < result.feature_count <= 25
    scores = [f.score for f in result.features]
    assert scores == sorted(scores, reverse=True)


def test_decode_failure_returns_empty_result():
    tracker = FeatureTracker()
    tracker.detect(textured_frame().tobytes(), WIDTH, HEIGHT)
    position = tracker.position

    result = tracker.detect(b"\x00\x01", WIDTH, HEIGHT)
    assert isinstance(result, FeatureDetectionResult)
    assert result.feature_count == 0
    assert result.match_count == 0
    assert result.position == position


def test_match_within_radius_only():
    tracker = FeatureTracker()
    previous = [FeaturePoint(10.0, 10.0), FeaturePoint(100.0, 100.0)]
    current = [FeaturePoint(15.0, 10.0, 50.0), FeaturePoint(60.0, 60.0, 40.0)]
    matches = tracker.match(current, previous)
    assert matches == [(current[0], previous[0])]


def test_match_allows_shared_previous_point():
    tracker = FeatureTracker()
    previous = [FeaturePoint(10.0, 10.0)]
    current = [FeaturePoint(12.0, 10.0, 2.0), FeaturePoint(8.0, 10.0, 1.0)]
    matches = tracker.match(current, previous)
    assert len(matches) == 2
    assert all(prev == previous[0] for _, prev in matches)


def test_match_limits_candidates():
    config = replace(FeatureTrackerConfig(), max_match_candidates=5)
    tracker = FeatureTracker(config)
    previous = [FeaturePoint(float(i), 0.0) for i in range(20)]
    current = [FeaturePoint(float(i), 1.0, float(i)) for i in range(20)]
    matches = tracker.match(current, previous)
    assert len(matches) == 5
    assert {cur.score for cur, _ in matches} == {15.0, 16.0, 17.0, 18.0, 19.0}


def test_filter_outliers_median_flow():
    inliers = [(2.0, 0.0)] * 90
    outliers = [(50.0, 50.0)] * 10
    matches = make_matches(inliers + outliers)
    filtered = tracker_filter(matches)

    kept_inliers = [m for m in filtered if m in matches[:90]]
    assert len(kept_inliers) >= 81
    assert not any(m in matches[90:] for m in filtered)


def tracker_filter(matches):
    return FeatureTracker().filter_outliers(matches)


def test_filter_outliers_flow_cap():
    # Consistent but implausibly large flow is rejected
    matches = make_matches([(35.0, 0.0)] * 10)
    assert tracker_filter(matches) == []


def test_flow_statistics():
    stats = flow_statistics(make_matches([(2.0, 0.0), (4.0, 0.0), (3.0, 4.0)]))
    assert stats.dx == pytest.approx(3.0)
    assert stats.dy == pytest.approx(0.0)
    assert stats.magnitude == pytest.approx(4.0)


def test_estimate_motion_noise_floor():
    tracker = FeatureTracker()
    estimate = tracker.estimate_motion(make_matches([(0.3, 0.1)] * 5), prior_depth=2.0)
    assert estimate.flow_dx == 0.0
    assert estimate.flow_dy == 0.0
    assert estimate.dx == 0.0
    assert estimate.depth == pytest.approx(2.0)


def test_estimate_motion_clamps_flow_and_velocity():
    tracker = FeatureTracker()
    estimate = tracker.estimate_motion(make_matches([(30.0, 40.0)] * 5), prior_depth=2.0)
    assert estimate.flow_dx == pytest.approx(6.0)
    assert estimate.flow_dy == pytest.approx(8.0)

    # move = 8 * 2 / 500; v = 0.1 * move / (1/30)
    expected_vy = 0.1 * (8.0 * 2.0 / 500.0) * 30.0
    assert tracker.velocity[1] == pytest.approx(expected_vy)

    for _ in range(200):
        tracker.estimate_motion(make_matches([(30.0, 40.0)] * 5), prior_depth=200.0)
    vx, vy = tracker.velocity
    assert abs(vx) <= 1.5
    assert vy == pytest.approx(1.5)


def test_depth_blends_toward_nominal():
    tracker = FeatureTracker()
    estimate = tracker.estimate_motion(make_matches([(2.0, 0.0)] * 5), prior_depth=4.0)
    assert estimate.depth == pytest.approx(0.95 * 4.0 + 0.05 * 2.0)


def dot_frame(offset_x=0):
    """Four isolated bright dots on the 12 px detection grid."""
    image = np.zeros((HEIGHT, WIDTH), dtype=np.uint8)
    for x in (36, 84):
        for y in (36, 72):
            image[y, x + offset_x] = 255
    return image.tobytes()


def test_tracking_integrates_shift():
    tracker = FeatureTracker()
    first = tracker.detect(dot_frame(0), WIDTH, HEIGHT)
    assert first.feature_count == 4
    assert first.x == 0.0

    result = tracker.detect(dot_frame(12), WIDTH, HEIGHT)
    assert result.match_count == 4
    assert result.raw_match_count == 4
    assert result.x > 0.0
    assert result.y == 0.0


def test_history_is_bounded_newest_first():
    tracker = FeatureTracker()
    for seed in range(5):
        result = tracker.detect(textured_frame(seed=seed).tobytes(), WIDTH, HEIGHT)
    history = tracker.history
    assert len(history) == 3
    assert history[0] == result.features


def test_result_helpers():
    features = tuple(FeaturePoint(float(i), 0.0) for i in range(10))
    matches = tuple((f, f) for f in features[:6])
    result = FeatureDetectionResult(features=features, matches=matches)
    assert result.match_ratio == pytest.approx(0.6)
    assert result.tracking_status == "good"
    assert FeatureDetectionResult(features=features, matches=matches[:3]).tracking_status == "medium"
    assert FeatureDetectionResult().tracking_status == "poor"


def test_reset():
    tracker = FeatureTracker()
    for shift in range(4):
        tracker.detect(textured_frame(3 * shift).tobytes(), WIDTH, HEIGHT)
    tracker.reset()
    assert not tracker.is_tracking
    assert tracker.history == ()
    assert tracker.position == (0.0, 0.0, 2.0)
    assert tracker.velocity == (0.0, 0.0)
