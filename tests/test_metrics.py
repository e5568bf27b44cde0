import numpy as np
import pandas as pd
import pytest

from slam_fusion.utils.data_utils import build_pose_timeseries, build_timeseries
from slam_fusion.utils.geometry import Pose2D
from slam_fusion.utils.metrics import (
    compare_sources,
    compute_ate,
    compute_path_metrics,
    compute_trajectory_stats,
)


def straight_line(offset_y=0.0, n=10):
    stamps = [0.1 * i for i in range(n)]
    poses = [Pose2D(0.1 * i, offset_y, 0.0) for i in range(n)]
    return build_pose_timeseries(stamps, poses)


def test_build_timeseries_index():
    df = build_timeseries([[0.0, 1.0, 2.0, 0.0], [0.5, 1.5, 2.5, 0.1]], ["stamp", "x", "y", "theta"])
    assert isinstance(df.index, pd.DatetimeIndex)
    assert list(df.columns) == ["x", "y", "theta"]


def test_build_pose_timeseries_length_mismatch():
    with pytest.raises(ValueError):
        build_pose_timeseries([0.0, 1.0], [Pose2D()])


def test_ate_zero_for_identical():
    ref = straight_line()
    assert compute_ate(ref, ref) == pytest.approx(0.0)


def test_ate_constant_offset():
    assert compute_ate(straight_line(0.3), straight_line(), verbose=True) == pytest.approx(0.3)


def test_ate_validation():
    with pytest.raises(ValueError):
        compute_ate(np.zeros((3, 3)), straight_line())
    with pytest.raises(ValueError):
        compute_ate(straight_line().drop(columns=["y"]), straight_line())


def test_ate_requires_overlap():
    late = build_pose_timeseries([100.0, 101.0], [Pose2D(), Pose2D()])
    with pytest.raises(RuntimeError):
        compute_ate(late, straight_line())


def test_trajectory_stats():
    stats = compute_trajectory_stats(straight_line(0.2), straight_line())
    assert stats["mean_error"] == pytest.approx(0.2)
    assert stats["std_error"] == pytest.approx(0.0, abs=1e-12)
    assert stats["aligned_frames"] == 10
    assert stats["alignment_ratio"] == pytest.approx(1.0)


def test_compare_sources_sorted_and_skips_empty():
    empty = build_pose_timeseries([], [])
    table = compare_sources(
        {"far": straight_line(0.5), "near": straight_line(0.1), "off": empty},
        straight_line(),
    )
    assert list(table["Source"]) == ["near", "far"]
    assert table["ATE"].iloc[0] == pytest.approx(0.1)


def test_path_metrics():
    length, duration, distance = compute_path_metrics(straight_line())
    assert length == pytest.approx(0.9)
    assert duration == pytest.approx(0.9)
    assert distance == pytest.approx(0.9)
    assert compute_path_metrics(straight_line(n=1)) == (0.0, 0.0, 0.0)
