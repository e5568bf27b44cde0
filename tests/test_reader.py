import numpy as np
import pytest

from slam_fusion.data.reader import ImuLogReader
from slam_fusion.fusion.fusion_engine import FusionEngine
from slam_fusion.visualization.trajectory import TrajectoryRecorder


@pytest.fixture
def imu_log(tmp_path):
    path = tmp_path / "imu.csv"
    rows = [
        "# time,ax,ay,az,gx,gy,gz",
        "10.2,1.0,0.0,9.81,0.0,0.0,0.0",
        "10.0,1.0,0.0,9.81,0.0,0.0,0.0",
        "10.1,1.0,0.0,9.81,0.0,0.0,0.0",
        "10.3,1.0,0.0,9.81,0.0,0.0,0.0",
    ]
    path.write_text("\n".join(rows) + "\n")
    return path


def test_load_sorts_and_derives_dt(imu_log):
    reader = ImuLogReader(imu_log)
    assert len(reader) == 4
    np.testing.assert_allclose(reader.data[:, 0], [10.0, 10.1, 10.2, 10.3])
    np.testing.assert_allclose(reader.dt, [0.0, 0.1, 0.1, 0.1])
    assert reader.duration == pytest.approx(0.3)


def test_end_frame(imu_log):
    assert len(ImuLogReader(imu_log, end_frame=2)) == 2


def test_wrong_column_count(tmp_path):
    path = tmp_path / "bad.csv"
    path.write_text("0.0,1.0,2.0\n0.1,1.0,2.0\n")
    with pytest.raises(ValueError):
        ImuLogReader(path)


def test_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        ImuLogReader(tmp_path / "missing.csv")


def test_replay(imu_log):
    reader = ImuLogReader(imu_log)
    engine = FusionEngine()
    recorder = TrajectoryRecorder()
    results = reader.replay(engine, recorder)

    assert len(results) == 4
    # First sample has dt = 0 and leaves the pose at the origin
    assert results[0].dr_pose.x == 0.0
    # Three samples: speed = 1.0 * 0.1 * 0.5 each
    assert results[-1].dr_pose.x == pytest.approx(0.15)
    assert len(recorder.path("dr")) == 4
    assert len(recorder.to_dataframes()["dr"]) == 4
