import math
from dataclasses import replace

import numpy as np
import pytest

from slam_fusion.config import EkfSlamConfig
from slam_fusion.slam.ekf_slam import EkfSlamEngine


def assert_invariants(engine):
    n = engine.landmark_count
    state = engine.state_vector
    sigma = engine.covariance
    assert len(state) == 3 + 2 * n
    assert sigma.shape == (3 + 2 * n, 3 + 2 * n)
    np.testing.assert_array_equal(sigma, sigma.T)
    assert -math.pi < state[2] <= math.pi


def test_initial_state():
    engine = EkfSlamEngine()
    np.testing.assert_array_equal(engine.state_vector, np.zeros(3))
    np.testing.assert_allclose(engine.covariance, 0.01 * np.eye(3))
    assert engine.landmark_count == 0
    assert_invariants(engine)


def test_single_observation_initializes_landmark():
    engine = EkfSlamEngine()
    snapshot = engine.update([(2.0, 0.0, 7)])
    assert snapshot.landmark_count == 1
    assert engine.landmark_position(7) == pytest.approx((2.0, 0.0))
    landmark = snapshot.landmarks[0]
    assert landmark.id == 7
    assert landmark.observed_count == 1
    # New block: weak prior, zero cross-covariance
    sigma = engine.covariance
    np.testing.assert_allclose(sigma[3:, 3:], 100.0 * np.eye(2))
    np.testing.assert_array_equal(sigma[:3, 3:], 0.0)
    assert_invariants(engine)


def test_repeated_observation_moves_toward_consensus():
    engine = EkfSlamEngine()
    engine.update([(2.0, 0.0, 7)])
    snapshot = engine.update([(2.1, 0.01, 7)])

    landmark = snapshot.landmarks[0]
    assert landmark.observed_count == 2
    assert snapshot.landmark_count == 1
    # Between the two observations, moved toward the second one
    assert 2.0 < landmark.x < 2.1
    second_y = 2.1 * math.sin(0.01)
    assert 0.0 < landmark.y < second_y
    assert_invariants(engine)


def test_predict_moves_robot():
    engine = EkfSlamEngine()
    engine.predict(1.0, 0.0, math.pi / 2)
    pose = engine.pose
    assert pose.x == pytest.approx(1.0)
    assert pose.y == pytest.approx(0.0)
    assert pose.theta == pytest.approx(math.pi / 2)
    engine.predict(1.0, 0.0, 0.0)
    assert engine.pose.x == pytest.approx(1.0)
    assert engine.pose.y == pytest.approx(1.0)


def test_predict_adds_motion_noise():
    engine = EkfSlamEngine()
    before = engine.covariance[:3, :3]
    engine.predict(0.5, 0.0, 0.1)
    after = engine.covariance[:3, :3]
    assert after[0, 0] > before[0, 0]
    assert after[2, 2] == pytest.approx(0.01 + 0.01 * 0.1)


def test_zero_motion_idempotence():
    engine = EkfSlamEngine()
    engine.predict(0.4, 0.0, 0.2)
    engine.update([(2.0, 0.3, "a"), (3.0, -0.5, "b")])
    pose_before = engine.state_vector[:3]
    variances_before = np.diag(engine.covariance)[3:]

    for _ in range(5):
        engine.predict(0.0, 0.0, 0.0)

    np.testing.assert_allclose(engine.state_vector[:3], pose_before, atol=1e-12)
    variances_after = np.diag(engine.covariance)[3:]
    np.testing.assert_allclose(variances_after, variances_before * 1.01**5)
    assert_invariants(engine)


def test_invariants_over_random_session():
    rng = np.random.default_rng(42)
    landmarks = rng.uniform(-4, 4, size=(8, 2))
    engine = EkfSlamEngine()
    previous_count = 0
    for _ in range(100):
        snapshot = engine.predict(rng.uniform(0, 0.1), 0.0, rng.uniform(-0.2, 0.2))
        pose = snapshot.pose
        measurements = []
        for sig, (lx, ly) in enumerate(landmarks):
            dx, dy = lx - pose.x, ly - pose.y
            r = math.hypot(dx, dy)
            if r < 5.0:
                bearing = math.atan2(dy, dx) - pose.theta
                measurements.append((r + rng.normal(0, 0.02), bearing, sig))
        engine.update(measurements)
        assert engine.landmark_count >= previous_count
        previous_count = engine.landmark_count
        assert_invariants(engine)


def test_degenerate_measurement_skipped():
    engine = EkfSlamEngine()
    engine.update([(0.0, 0.0, 1), (float("nan"), 0.0, 2), (1.0, float("inf"), 3)])
    assert engine.landmark_count == 0
    engine.update([(1.5, 0.2, 4)])
    assert engine.landmark_count == 1
    assert_invariants(engine)


def test_non_finite_motion_ignored():
    engine = EkfSlamEngine()
    engine.predict(float("nan"), 0.0, 0.0)
    np.testing.assert_array_equal(engine.state_vector, np.zeros(3))


def test_singular_innovation_counts_without_correction():
    # Zero measurement noise and a zero-variance landmark make S singular
    config = replace(
        EkfSlamConfig(),
        initial_pose_variance=0.0,
        new_landmark_variance=0.0,
        range_noise=0.0,
        bearing_noise=0.0,
    )
    engine = EkfSlamEngine(config)
    engine.update([(2.0, 0.0, 1)])
    state_before = engine.state_vector
    snapshot = engine.update([(2.5, 0.1, 1)])
    np.testing.assert_array_equal(engine.state_vector, state_before)
    assert snapshot.landmarks[0].observed_count == 2


def test_unknown_signature_lookup():
    engine = EkfSlamEngine()
    with pytest.raises(KeyError):
        engine.landmark_position(99)


def test_snapshot_is_a_copy():
    engine = EkfSlamEngine()
    engine.update([(2.0, 0.0, 7)])
    snapshot = engine.snapshot()
    snapshot.robot_covariance[0, 0] = 123.0
    assert engine.covariance[0, 0] == pytest.approx(0.01)
    state = engine.state_vector
    state[3] = -5.0
    assert engine.landmark_position(7)[0] == pytest.approx(2.0)


def test_reset():
    engine = EkfSlamEngine()
    engine.predict(1.0, 0.0, 0.5)
    engine.update([(2.0, 0.0, 7)])
    engine.reset()
    assert engine.landmark_count == 0
    np.testing.assert_array_equal(engine.state_vector, np.zeros(3))
    np.testing.assert_allclose(engine.covariance, 0.01 * np.eye(3))
    # Signatures are forgotten too
    engine.update([(1.0, 0.0, 7)])
    assert engine.landmarks()[0].observed_count == 1


def test_landmark_variance_inflation_is_capped():
    config = replace(EkfSlamConfig(), landmark_variance_inflation=2.0)
    engine = EkfSlamEngine(config)
    engine.update([(2.0, 0.0, "seen"), (3.0, 1.0, "lost")])

    # Uncapped doubling would overflow to inf long before this
    for _ in range(1100):
        engine.predict(0.0, 0.0, 0.0)

    diag = np.diag(engine.covariance)
    assert np.isfinite(diag).all()
    assert diag[3:].max() == pytest.approx(config.max_landmark_variance)

    engine.update([(2.5, 0.0, "seen")])
    x, y = engine.landmark_position("seen")
    assert x > 2.0
    assert np.isfinite(engine.covariance).all()
    assert_invariants(engine)


def test_landmark_offset_out_of_range():
    engine = EkfSlamEngine()
    engine.update([(2.0, 0.0, "a")])
    assert engine._landmark_offset(0) == 3
    with pytest.raises(IndexError):
        engine._landmark_offset(1)


def test_landmark_ids_keep_caller_signatures():
    engine = EkfSlamEngine()
    engine.update([(2.0, 0.0, "near"), (3.0, 0.5, (4, 2))])
    assert [lm.id for lm in engine.landmarks()] == ["near", (4, 2)]
