#!/usr/bin/env python3
"""
IMU Log Reader Module

Loads recorded inertial logs and replays them through the fusion engine, so
the same pose pipeline that runs on live sensor callbacks can be evaluated
offline and compared across configurations.

Log Format
----------
Comma-separated text, one sample per row, seven columns:

    time[s], ax[m/s²], ay[m/s²], az[m/s²], gx[rad/s], gy[rad/s], gz[rad/s]

Lines starting with ``#`` are comments. Rows are sorted by time on load.
"""

import logging

import numpy as np

logger = logging.getLogger(__name__)

IMU_COLUMNS = ["time", "ax", "ay", "az", "gx", "gy", "gz"]


class ImuLogReader:
    """
    Recorded IMU log with per-sample time steps.

    Attributes
    ----------
    data : ndarray of shape (n_samples, 7)
        Samples ``[time, ax, ay, az, gx, gy, gz]`` sorted by time.
    dt : ndarray of shape (n_samples,)
        Seconds since the previous sample; 0 for the first sample, which
        the fusion engine therefore treats as a no-op.

    Parameters
    ----------
    path : str or path-like
        CSV log file.
    end_frame : int, optional
        Keep at most this many samples. Default: all.
    skiprows : int, optional
        Header rows to skip. Default: 0.

    Raises
    ------
    FileNotFoundError
        If the log file is missing.
    ValueError
        If the log does not have exactly seven columns.

    Examples
    --------
    >>> reader = ImuLogReader("logs/walk.csv")
    >>> engine = FusionEngine()
    >>> results = reader.replay(engine)
    >>> results[-1].dr_pose
    """

    def __init__(self, path, end_frame=None, skiprows=0):
        self.path = path
        self.load_data(path, end_frame, skiprows)

    def load_data(self, path, end_frame=None, skiprows=0):
        data = np.loadtxt(path, delimiter=",", comments="#", skiprows=skiprows, ndmin=2)
        if data.size == 0:
            data = data.reshape(0, len(IMU_COLUMNS))
        if data.shape[1] != len(IMU_COLUMNS):
            raise ValueError(
                f"IMU log {path} has {data.shape[1]} columns, expected "
                f"{len(IMU_COLUMNS)} ({', '.join(IMU_COLUMNS)})"
            )
        data = data[np.argsort(data[:, 0], kind="stable")]
        if end_frame is not None:
            data = data[:end_frame]

        self.data = data
        self.dt = np.diff(data[:, 0], prepend=data[0, 0]) if len(data) else np.zeros(0)
        logger.info(f"Loaded {len(self.data)} IMU samples from {path}")

    def __len__(self):
        return len(self.data)

    @property
    def duration(self):
        """Time span of the log in seconds."""
        if len(self.data) < 2:
            return 0.0
        return float(self.data[-1, 0] - self.data[0, 0])

    def samples(self):
        """
        Iterate over samples as ``(time, ax, ay, az, gx, gy, gz, dt)`` tuples.
        """
        for row, dt in zip(self.data, self.dt):
            yield (*(float(v) for v in row), float(dt))

    def replay(self, engine, recorder=None):
        """
        Feed every sample through ``engine.update_imu``.

        Parameters
        ----------
        engine : FusionEngine
        recorder : TrajectoryRecorder, optional
            If given, each result is recorded with the sample time relative
            to the first sample.

        Returns
        -------
        list of FusionResult
            One result per sample.
        """
        results = []
        t0 = float(self.data[0, 0]) if len(self.data) else 0.0
        for t, ax, ay, az, gx, gy, gz, dt in self.samples():
            result = engine.update_imu(ax, ay, az, gx, gy, gz, dt)
            if recorder is not None:
                recorder.record(result, stamp=t - t0)
            results.append(result)
        logger.info(f"Replayed {len(results)} samples ({self.duration:.2f} s)")
        return results


if __name__ == "__main__":
    import sys

    import matplotlib.pyplot as plt

    from slam_fusion.config import SlamFusionConfig
    from slam_fusion.fusion.fusion_engine import FusionEngine
    from slam_fusion.visualization.trajectory import TrajectoryRecorder

    logging.basicConfig(level=logging.INFO)

    reader = ImuLogReader(sys.argv[1])
    engine = FusionEngine(SlamFusionConfig.from_dict({"fusion": {"slam_enabled": True}}))
    recorder = TrajectoryRecorder()
    reader.replay(engine, recorder)
    recorder.plot()
    plt.show()
