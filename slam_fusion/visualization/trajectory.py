"""
Trajectory recording and plotting for fusion results.

``TrajectoryRecorder`` keeps one path per pose source (dead reckoning,
EKF-SLAM, visual odometry and the fused blend), converts them to
time-indexed DataFrames for ``slam_fusion.utils.metrics``, and draws them
on a single matplotlib figure together with the EKF landmark map.

Examples
--------
>>> engine = FusionEngine()
>>> recorder = TrajectoryRecorder()
>>> for step in range(100):
...     recorder.record(engine.update_imu(0.5, 0, 9.81, 0, 0, 0.1, 0.05), stamp=step * 0.05)
>>> frames = recorder.to_dataframes()
>>> frames["dr"].shape
(100, 3)
"""

import logging

import matplotlib.pyplot as plt

from slam_fusion.utils.data_utils import build_pose_timeseries

logger = logging.getLogger(__name__)

SOURCES = ("dr", "slam", "visual", "fused")

# Plot style per source: (format, label)
_STYLES = {
    "dr": ("r", "Dead Reckoning"),
    "slam": ("b", "EKF-SLAM"),
    "visual": ("g", "Visual Odometry"),
    "fused": ("m--", "Fused Estimate"),
}


class TrajectoryRecorder:
    """
    Per-source pose paths built from successive ``FusionResult`` snapshots.

    A source's pose is appended only while its flag is set in the result;
    the fused pose is appended for every result.

    Parameters
    ----------
    max_length : int, optional
        Keep at most this many samples per source (oldest dropped first).
        Default: unbounded.
    """

    def __init__(self, max_length=None):
        self.max_length = max_length
        self.reset()

    def reset(self):
        """Clear every recorded path."""
        self._stamps = {source: [] for source in SOURCES}
        self._poses = {source: [] for source in SOURCES}
        self._sample_count = 0
        self.last_result = None

    def __len__(self):
        return self._sample_count

    def _append(self, source, stamp, pose):
        stamps = self._stamps[source]
        poses = self._poses[source]
        stamps.append(stamp)
        poses.append(pose)
        if self.max_length is not None and len(poses) > self.max_length:
            del stamps[0]
            del poses[0]

    def record(self, result, stamp=None):
        """
        Append the poses of one fusion result.

        Parameters
        ----------
        result : FusionResult
        stamp : float, optional
            Sample time in seconds. Default: the number of samples recorded
            so far, so paths stay aligned sample by sample.
        """
        if stamp is None:
            stamp = float(self._sample_count)
        if result.dr_enabled:
            self._append("dr", stamp, result.dr_pose)
        if result.slam_enabled:
            self._append("slam", stamp, result.slam_pose)
        if result.visual_enabled:
            self._append("visual", stamp, result.visual_pose)
        self._append("fused", stamp, result.fused_pose)
        self._sample_count += 1
        self.last_result = result

    def path(self, source):
        """Recorded poses of ``source`` ('dr', 'slam', 'visual' or 'fused')."""
        if source not in self._poses:
            raise ValueError(f"Unknown source '{source}'. Expected one of {SOURCES}")
        return list(self._poses[source])

    def to_dataframes(self):
        """
        Recorded paths as time-indexed DataFrames.

        Returns
        -------
        dict of str to pandas.DataFrame
            One DataFrame per source with columns ['x', 'y', 'theta'];
            sources that were never enabled map to empty frames.
        """
        return {
            source: build_pose_timeseries(self._stamps[source], self._poses[source])
            for source in SOURCES
        }

    def plot(self, result=None, ax=None):
        """
        Draw all non-empty paths, start/end markers and the landmark map.

        Parameters
        ----------
        result : FusionResult, optional
            Snapshot whose landmarks and visual map points are drawn.
            Default: the last recorded result.
        ax : matplotlib.axes.Axes, optional
            Axes to draw on. Default: the current axes.

        Returns
        -------
        matplotlib.axes.Axes
        """
        if ax is None:
            ax = plt.gca()
        if result is None:
            result = self.last_result

        for source in SOURCES:
            poses = self._poses[source]
            if not poses:
                continue
            fmt, label = _STYLES[source]
            ax.plot([p.x for p in poses], [p.y for p in poses], fmt, label=label)

        # Start and end points of the fused path
        fused = self._poses["fused"]
        if fused:
            ax.plot(fused[0].x, fused[0].y, "go", label="Start point")
            ax.plot(fused[-1].x, fused[-1].y, "yo", label="End point")

        if result is not None and result.landmarks:
            for landmark in result.landmarks:
                ax.text(landmark.x, landmark.y, str(landmark.id), alpha=0.5, fontsize=10)
            ax.scatter(
                [lm.x for lm in result.landmarks],
                [lm.y for lm in result.landmarks],
                s=200,
                c="k",
                alpha=0.2,
                marker="*",
                label="EKF Landmarks",
            )

        if result is not None and result.visual_map_points:
            ax.scatter(
                [mp.x for mp in result.visual_map_points],
                [mp.y for mp in result.visual_map_points],
                s=10,
                c="c",
                alpha=0.5,
                label="Visual Map Points",
            )

        title = "Pose Sources"
        if result is not None and result.slam_enabled and result.dr_enabled:
            title += f" (SLAM-DR error {result.slam_dr_error:.2f} m)"
        ax.set_title(title)
        ax.set_xlabel("x (m)")
        ax.set_ylabel("y (m)")
        ax.axis("equal")
        ax.legend(loc="center left", bbox_to_anchor=(1, 0.5))
        logger.debug(f"Plotted {self._sample_count} samples")
        return ax
