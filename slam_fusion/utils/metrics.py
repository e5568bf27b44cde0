"""
Trajectory comparison metrics.

Standardized metrics for comparing pose sources against a reference
trajectory, typically dead reckoning or EKF-SLAM against the fused estimate,
or any source against externally supplied ground truth. All metrics operate
on pandas DataFrames with timestamp indices (see
``TrajectoryRecorder.to_dataframes``) and align samples by inner join.
"""

import logging
from typing import Tuple

import numpy as np
import pandas as pd

# Configure module logger
logger = logging.getLogger(__name__)


def _validate_trajectory(df, name):
    if not isinstance(df, pd.DataFrame):
        raise ValueError(
            f"{name} must be a DataFrame, got {type(df).__name__}. "
            f"Did you call TrajectoryRecorder.to_dataframes()?"
        )
    for col in ("x", "y"):
        if col not in df.columns:
            raise ValueError(
                f"{name} missing required column '{col}'. "
                f"Available columns: {list(df.columns)}"
            )


def _align(estimated, reference):
    aligned = estimated[["x", "y"]].join(reference[["x", "y"]], how="inner", rsuffix="_ref")
    if len(aligned) == 0:
        raise RuntimeError(
            "Timestamp alignment produced 0 matching frames! "
            f"Estimated time range: [{estimated.index.min()}, {estimated.index.max()}], "
            f"Reference time range: [{reference.index.min()}, {reference.index.max()}]"
        )
    return aligned


def _position_errors(aligned):
    return np.sqrt(
        (aligned["x"] - aligned["x_ref"]) ** 2 + (aligned["y"] - aligned["y_ref"]) ** 2
    )


def compute_ate(
    estimated: pd.DataFrame,
    reference: pd.DataFrame,
    verbose: bool = False,
) -> float:
    """
    Absolute Trajectory Error (position RMSE) after timestamp matching.

    Parameters
    ----------
    estimated : pd.DataFrame
        Trajectory with datetime index and at least columns ['x', 'y'].
    reference : pd.DataFrame
        Reference trajectory in the same format.
    verbose : bool, optional
        Log alignment and error statistics at INFO level. Default: False.

    Returns
    -------
    float
        RMSE of per-sample Euclidean position errors.

    Raises
    ------
    ValueError
        If an input is not a DataFrame or lacks the x/y columns.
    RuntimeError
        If no timestamps match.

    Examples
    --------
    >>> frames = recorder.to_dataframes()
    >>> compute_ate(frames["slam"], frames["dr"])  # doctest: +SKIP
    0.0421
    """
    _validate_trajectory(estimated, "estimated")
    _validate_trajectory(reference, "reference")

    aligned = _align(estimated, reference)
    errors = _position_errors(aligned)
    ate = float(np.sqrt(np.mean(errors**2)))

    if verbose:
        alignment_pct = len(aligned) / len(estimated) * 100
        logger.info("=" * 60)
        logger.info(f"✓ Aligned frames: {len(aligned)} ({alignment_pct:.1f}% of estimates)")
        if alignment_pct < 90:
            logger.warning(
                f"⚠ Only {alignment_pct:.1f}% of frames aligned! "
                "Check timestamp synchronization."
            )
        logger.info(f"✓ Mean error: {np.mean(errors):.4f} m")
        logger.info(f"✓ Median error: {np.median(errors):.4f} m")
        logger.info(f"✓ Max error: {np.max(errors):.4f} m")
        logger.info(f"✓ ATE (RMSE): {ate:.4f} m")
        logger.info("=" * 60)

    return ate


def compute_trajectory_stats(estimated: pd.DataFrame, reference: pd.DataFrame) -> dict:
    """
    Detailed position error statistics between two trajectories.

    Returns
    -------
    dict
        Keys 'ate', 'mean_error', 'std_error', 'median_error', 'max_error',
        'min_error', 'aligned_frames', 'alignment_ratio'.
    """
    _validate_trajectory(estimated, "estimated")
    _validate_trajectory(reference, "reference")
    aligned = _align(estimated, reference)
    errors = _position_errors(aligned)

    return {
        "ate": float(np.sqrt(np.mean(errors**2))),
        "mean_error": float(np.mean(errors)),
        "std_error": float(np.std(errors)),
        "median_error": float(np.median(errors)),
        "max_error": float(np.max(errors)),
        "min_error": float(np.min(errors)),
        "aligned_frames": len(aligned),
        "alignment_ratio": len(aligned) / len(estimated),
    }


def compare_sources(
    sources: dict[str, pd.DataFrame], reference: pd.DataFrame
) -> pd.DataFrame:
    """
    Compare several pose sources against one reference trajectory.

    Parameters
    ----------
    sources : dict
        Mapping from source name to trajectory DataFrame. Empty trajectories
        (sources that were never enabled) are skipped.
    reference : pd.DataFrame
        Trajectory every source is compared to.

    Returns
    -------
    pd.DataFrame
        Columns ['Source', 'ATE', 'Mean Error', 'Std Error', 'Max Error',
        'Aligned Frames'], sorted by ATE (best first).

    Examples
    --------
    >>> frames = recorder.to_dataframes()
    >>> compare_sources(
    ...     {"DR": frames["dr"], "EKF-SLAM": frames["slam"]}, frames["fused"]
    ... )  # doctest: +SKIP
    """
    results = []
    for name, states_df in sources.items():
        if len(states_df) == 0:
            logger.info(f"Skipping source '{name}' with no samples")
            continue
        stats = compute_trajectory_stats(states_df, reference)
        results.append(
            {
                "Source": name,
                "ATE": stats["ate"],
                "Mean Error": stats["mean_error"],
                "Std Error": stats["std_error"],
                "Max Error": stats["max_error"],
                "Aligned Frames": stats["aligned_frames"],
            }
        )

    df = pd.DataFrame(
        results,
        columns=["Source", "ATE", "Mean Error", "Std Error", "Max Error", "Aligned Frames"],
    )
    return df.sort_values("ATE").reset_index(drop=True)


def compute_path_metrics(trajectory: pd.DataFrame) -> Tuple[float, float, float]:
    """
    Path length, duration and start-to-end distance of one trajectory.

    Returns
    -------
    tuple of float
        ``(path_length, duration_s, distance)``; zeros for fewer than two samples.
    """
    _validate_trajectory(trajectory, "trajectory")
    if len(trajectory) < 2:
        return 0.0, 0.0, 0.0
    dx = np.diff(trajectory["x"].to_numpy())
    dy = np.diff(trajectory["y"].to_numpy())
    path_length = float(np.sum(np.sqrt(dx**2 + dy**2)))
    duration = (trajectory.index[-1] - trajectory.index[0]).total_seconds()
    distance = float(
        np.hypot(
            trajectory["x"].iloc[-1] - trajectory["x"].iloc[0],
            trajectory["y"].iloc[-1] - trajectory["y"].iloc[0],
        )
    )
    return path_length, float(duration), distance
