import math

import pytest

from slam_fusion.config import SlamFusionConfig
from slam_fusion.fusion.dead_reckoning import DeadReckoning
from slam_fusion.fusion.fusion_engine import FusionEngine, LandmarkSimulator
from slam_fusion.utils.geometry import Pose2D


def make_engine(**fusion):
    fusion.setdefault("seed", 0)
    return FusionEngine(SlamFusionConfig.from_dict({"fusion": fusion}))


def drive(engine, steps=20, ax=0.8, gz=0.2, dt=0.05):
    result = engine.last_result
    for _ in range(steps):
        result = engine.update_imu(ax, 0.0, 9.81, 0.0, 0.0, gz, dt)
    return result


def test_pure_gravity_does_not_move_dr():
    engine = make_engine()
    for _ in range(50):
        result = engine.update_imu(0.0, 0.0, 9.81, 0.0, 0.0, 0.0, 0.1)
    assert result.dr_pose.x == pytest.approx(0.0)
    assert result.dr_pose.y == pytest.approx(0.0)
    assert result.fused_pose == result.dr_pose


def test_dead_reckoning_motion_model():
    dr = DeadReckoning()
    pose = dr.integrate(ax=3.0, ay=4.0, gz=0.0, dt=0.1)
    # speed = 5 * 0.1 * 0.5
    assert pose.x == pytest.approx(0.25)
    pose = dr.integrate(ax=0.0, ay=0.0, gz=math.pi, dt=0.5)
    assert pose.theta == pytest.approx(math.pi / 2)
    pose = dr.integrate(ax=2.0, ay=0.0, gz=0.0, dt=1.0)
    assert pose.x == pytest.approx(0.25)
    assert pose.y == pytest.approx(1.0)


def test_single_source_blend_is_exact():
    engine = make_engine(dr_enabled=True)
    result = drive(engine)
    assert result.fused_pose == result.dr_pose

    engine = make_engine(dr_enabled=False, slam_enabled=True)
    result = drive(engine)
    assert result.fused_pose == result.slam_pose


def test_blend_uses_normalized_weights():
    engine = make_engine(dr_enabled=True, slam_enabled=True)
    result = drive(engine, steps=10)
    w_dr = 0.3 / 0.7
    w_slam = 0.4 / 0.7
    assert result.fused_pose.x == pytest.approx(
        w_dr * result.dr_pose.x + w_slam * result.slam_pose.x
    )
    assert result.fused_pose.y == pytest.approx(
        w_dr * result.dr_pose.y + w_slam * result.slam_pose.y
    )


def test_non_positive_dt_is_noop():
    engine = make_engine()
    result = drive(engine, steps=3)
    assert engine.update_imu(5.0, 0.0, 9.81, 0.0, 0.0, 1.0, 0.0) is result
    assert engine.update_imu(5.0, 0.0, 9.81, 0.0, 0.0, 1.0, -0.1) is result
    assert engine.update_imu(5.0, 0.0, 9.81, 0.0, 0.0, 1.0, float("nan")) is result


def test_slam_maps_landmarks_in_range():
    engine = make_engine(slam_enabled=True)
    result = engine.update_imu(0.0, 0.0, 9.81, 0.0, 0.0, 0.0, 0.05)
    # (4, 3) lies exactly at the 5.0 range limit and is not reported
    assert {lm.id for lm in result.landmarks} == {0, 1, 2, 4, 5}
    assert result.slam_state_size == 3 + 2 * 5
    assert result.slam_enabled


def test_slam_tracks_dead_reckoning():
    engine = make_engine(slam_enabled=True)
    result = drive(engine, steps=40)
    assert result.slam_dr_error < 0.5
    assert result.slam_dr_error == pytest.approx(result.slam_pose.distance_to(result.dr_pose))


def test_seeded_engines_agree():
    first = drive(make_engine(slam_enabled=True, seed=7))
    second = drive(make_engine(slam_enabled=True, seed=7))
    assert first.slam_pose == second.slam_pose
    assert first.landmarks == second.landmarks


def test_disabling_source_keeps_state():
    engine = make_engine(dr_enabled=True)
    moved = drive(engine, steps=10).dr_pose

    engine.enable_dr(False)
    engine.enable_slam(True)
    result = drive(engine, steps=10)
    assert result.dr_pose == moved
    assert not result.dr_enabled
    assert result.fused_pose == result.slam_pose

    engine.enable_dr(True)
    result = drive(engine, steps=1)
    assert result.dr_pose != moved
    assert result.dr_pose.distance_to(moved) < 0.1


def test_visual_pose_override():
    engine = make_engine(dr_enabled=False, visual_enabled=True)
    engine.update_visual_pose(Pose2D(1.0, 2.0, 0.3))
    result = drive(engine, steps=1)
    assert result.visual_pose == Pose2D(1.0, 2.0, 0.3)
    assert result.fused_pose == Pose2D(1.0, 2.0, 0.3)


def test_visual_pose_override_ignored_while_disabled():
    engine = make_engine()
    engine.update_visual_pose(Pose2D(1.0, 2.0, 0.3))
    engine.enable_visual_odometry(True)
    result = drive(engine, steps=1)
    assert result.visual_pose == Pose2D()


def test_process_frame_forwards_to_visual_odometry():
    engine = make_engine(visual_enabled=True)
    vo_result = engine.process_frame(bytes(64 * 48), 64, 48)
    assert vo_result.frame_count == 1
    assert engine.visual_odometry.frame_count == 1


def test_reset():
    engine = make_engine(slam_enabled=True)
    drive(engine, steps=10)
    engine.reset()
    result = engine.last_result
    assert result.dr_pose == Pose2D()
    assert result.slam_pose == Pose2D()
    assert result.fused_pose == Pose2D()
    assert engine.slam.landmark_count == 0
    assert result.slam_enabled


def test_landmark_simulator_range_limit():
    sensor = LandmarkSimulator([(1.0, 0.0), (10.0, 0.0)], max_range=5.0, range_jitter=0.0, bearing_jitter=0.0)
    measurements = sensor.measure(Pose2D(0.0, 0.0, math.pi / 2))
    assert len(measurements) == 1
    r, bearing, signature = measurements[0]
    assert r == pytest.approx(1.0)
    assert bearing == pytest.approx(-math.pi / 2)
    assert signature == 0
