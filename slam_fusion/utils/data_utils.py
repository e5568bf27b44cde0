"""
Data transformation utilities.

Helpers for turning recorded pose sequences into time-indexed pandas
DataFrames, the common format consumed by the trajectory metrics.
"""

import numpy as np
import pandas as pd

POSE_COLUMNS = ["stamp", "x", "y", "theta"]


def build_timeseries(data, cols):
    """
    Convert a numeric array to a DataFrame with a datetime index.

    Parameters
    ----------
    data : array_like of shape (n, len(cols))
        Rows of samples; the first column holds timestamps in seconds.
    cols : list of str
        Column names. The first column must be 'stamp'.

    Returns
    -------
    pandas.DataFrame
        DataFrame indexed by ``stamp`` converted to datetimes.

    Examples
    --------
    >>> import numpy as np
    >>> from slam_fusion.utils.data_utils import build_timeseries
    >>> data = np.array([
    ...     [0.0, 0.0, 0.0, 0.0],
    ...     [0.1, 0.05, 0.0, 0.01],
    ... ])
    >>> df = build_timeseries(data, cols=["stamp", "x", "y", "theta"])
    >>> list(df.columns)
    ['x', 'y', 'theta']

    Notes
    -----
    Timestamps are interpreted as seconds since the Unix epoch. Session
    relative stamps (starting at 0) work the same way and keep inner joins
    between trajectories of one session aligned.
    """
    timeseries = pd.DataFrame(np.asarray(data, dtype=float).reshape(-1, len(cols)), columns=cols)
    timeseries["stamp"] = pd.to_datetime(timeseries["stamp"], unit="s")
    timeseries = timeseries.set_index("stamp")
    return timeseries


def build_pose_timeseries(stamps, poses):
    """
    Time-indexed x/y/theta DataFrame from parallel stamp and pose sequences.

    Parameters
    ----------
    stamps : sequence of float
        Seconds.
    poses : sequence of Pose2D
        Same length as ``stamps``.
    """
    if len(stamps) != len(poses):
        raise ValueError(
            f"Got {len(stamps)} stamps for {len(poses)} poses; lengths must match"
        )
    data = [(s, p.x, p.y, p.theta) for s, p in zip(stamps, poses)]
    return build_timeseries(data, cols=POSE_COLUMNS)
