#!/usr/bin/env python3
"""
Sparse Feature Tracking and Median-Flow Motion Estimation.

This module turns raw single-channel luminance frames into a robust 2-D
displacement estimate. It is an approximate optical-flow integrator, not a
structure-from-motion front end: features have no descriptors, depth is not
observable, and correspondences are purely nearest-neighbour by position.

Pipeline
--------
1. **Detection**: a semi-dense grid (plus a border band) is scored with a
   fast corner measure

       score(x, y) = (|c - l| + |c - r| + |c - t| + |c - b|
                      + |c - br| + |c - bl|) // 2

   where c is the centre luminance and the other terms are the 4 orthogonal
   and 2 lower diagonal neighbours. Points above a threshold are kept and
   the set is capped to the strongest K.

2. **Matching**: each of the strongest M current points is paired with the
   nearest previous point inside a search radius. Several current points
   may share one previous point.

3. **Median-flow filtering**: matches whose flow magnitude deviates from the
   median magnitude by more than a tolerance, or exceeds 3× the per-frame
   cap, are rejected. The median has a ~50% breakdown point, so a minority
   of mismatches cannot drag the consensus.

4. **Motion estimation**: the per-axis median flow is denoised, clamped,
   converted to world units with a pinhole approximation

       Δworld = Δpixel · depth / f

   smoothed as a velocity with an exponential filter, clamped per axis and
   integrated into the tracked position.

Frame processing never raises: a buffer that cannot be decoded yields an
empty ``FeatureDetectionResult`` that still reports the last position.

Examples
--------
>>> import numpy as np
>>> from slam_fusion.vision.feature_tracker import FeatureTracker
>>> tracker = FeatureTracker()
>>> frame = (np.random.default_rng(0).random((240, 320)) * 255).astype(np.uint8)
>>> result = tracker.detect(frame.tobytes(), 320, 240)
>>> result.feature_count <= tracker.config.max_features
True
"""

import logging
import math
import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import NamedTuple

import numpy as np

from slam_fusion.config import FeatureTrackerConfig
from slam_fusion.errors import FrameDecodeError

logger = logging.getLogger(__name__)


class FeaturePoint(NamedTuple):
    """Scored image feature in pixel coordinates."""

    x: float
    y: float
    score: float = 1.0


@dataclass(frozen=True)
class FlowStatistics:
    """Median flow of a match set (pixels)."""

    dx: float
    dy: float
    magnitude: float


@dataclass(frozen=True)
class MotionEstimate:
    """World displacement applied for one frame and the depth after the update."""

    dx: float
    dy: float
    depth: float
    flow_dx: float = 0.0
    flow_dy: float = 0.0


@dataclass(frozen=True)
class FeatureDetectionResult:
    """
    Per-frame output of ``FeatureTracker.detect``.

    Attributes
    ----------
    features : tuple of FeaturePoint
        Features detected in this frame.
    matches : tuple of (FeaturePoint, FeaturePoint)
        ``(current, previous)`` pairs that survived outlier rejection.
    x, y : float
        Integrated position estimate (world units).
    z : float
        Current nominal depth used for the pixel-to-world conversion.
    raw_match_count : int
        Number of nearest-neighbour matches before outlier rejection.
    processing_time_ms : float
        Wall time spent on the frame.
    """

    features: tuple = ()
    matches: tuple = ()
    x: float = 0.0
    y: float = 0.0
    z: float = 0.0
    raw_match_count: int = 0
    processing_time_ms: float = 0.0

    @property
    def feature_count(self):
        return len(self.features)

    @property
    def match_count(self):
        return len(self.matches)

    @property
    def match_ratio(self):
        return self.match_count / max(self.feature_count, 1)

    @property
    def tracking_status(self):
        """Tracking label ("good", "medium" or "poor") from the match ratio."""
        ratio = self.match_ratio
        if ratio > 0.5:
            return "good"
        if ratio > 0.2:
            return "medium"
        return "poor"

    @property
    def position(self):
        return (self.x, self.y, self.z)


def decode_luma(luma, width, height):
    """
    Interpret a row-major 8-bit luminance buffer as a ``height × width`` image.

    Parameters
    ----------
    luma : bytes, bytearray, memoryview or array_like of int
        Single-channel buffer with at least ``width * height`` entries; extra
        trailing bytes (row padding) are ignored.
    width, height : int
        Frame dimensions in pixels.

    Returns
    -------
    ndarray of shape (height, width), dtype int32
        Luminance values in 0..255.

    Raises
    ------
    FrameDecodeError
        If the dimensions are invalid or the buffer is too short or not integral.
    """
    try:
        width = int(width)
        height = int(height)
        if isinstance(luma, (bytes, bytearray, memoryview)):
            buffer = np.frombuffer(luma, dtype=np.uint8)
        else:
            buffer = np.asarray(luma)
    except (TypeError, ValueError) as e:
        raise FrameDecodeError(f"Cannot read luminance buffer: {e}") from e

    if width <= 0 or height <= 0:
        raise FrameDecodeError(f"Invalid frame size {width}x{height}")
    if buffer.dtype.kind not in "uib":
        raise FrameDecodeError(f"Luminance buffer must be integral, got dtype {buffer.dtype}")
    buffer = buffer.ravel()
    if buffer.size < width * height:
        raise FrameDecodeError(
            f"Luminance buffer has {buffer.size} entries, need {width * height} for {width}x{height}"
        )
    return (buffer[: width * height].astype(np.int32) & 0xFF).reshape(height, width)


def corner_scores(image, xs, ys):
    """
    Fast corner score at the given pixel coordinates.

    Pixels closer than 2 px to the frame edge score 0.

    Parameters
    ----------
    image : ndarray of shape (height, width)
        Integer luminance image.
    xs, ys : array_like of int
        Pixel coordinates, same length.

    Returns
    -------
    ndarray of int
        Score per coordinate.
    """
    height, width = image.shape
    xs = np.asarray(xs, dtype=int)
    ys = np.asarray(ys, dtype=int)
    scores = np.zeros(xs.shape, dtype=np.int64)
    valid = (xs >= 2) & (xs < width - 2) & (ys >= 2) & (ys < height - 2)
    x = xs[valid]
    y = ys[valid]
    center = image[y, x]
    total = (
        np.abs(center - image[y, x + 1])
        + np.abs(center - image[y, x - 1])
        + np.abs(center - image[y + 1, x])
        + np.abs(center - image[y - 1, x])
        + np.abs(center - image[y + 1, x + 1])
        + np.abs(center - image[y + 1, x - 1])
    )
    scores[valid] = total // 2
    return scores


def flow_vectors(matches):
    """(N, 2) array of ``current - previous`` pixel displacements."""
    if not matches:
        return np.zeros((0, 2))
    return np.array([(c.x - p.x, c.y - p.y) for c, p in matches], dtype=float)


def flow_statistics(matches):
    """Per-axis median displacement and median flow magnitude of a match set."""
    flows = flow_vectors(matches)
    if len(flows) == 0:
        return FlowStatistics(0.0, 0.0, 0.0)
    magnitudes = np.hypot(flows[:, 0], flows[:, 1])
    return FlowStatistics(
        float(np.median(flows[:, 0])),
        float(np.median(flows[:, 1])),
        float(np.median(magnitudes)),
    )


class FeatureTracker:
    """
    Frame-to-frame feature tracker with median-flow position integration.

    Lifecycle: ``Idle`` (no previous frame) → ``Tracking`` after the first
    decoded frame; ``reset()`` returns to ``Idle`` with cleared history,
    zero position and velocity, and the initial depth.

    Parameters
    ----------
    config : FeatureTrackerConfig, optional
        Detection, matching and integration tunables (reference defaults:
        grid pitch 12 px, thresholds 20/25, cap 150 features, 60 match
        candidates within 20 px, 10 px outlier tolerance and flow cap,
        focal length 500, smoothing 0.9, velocity cap 1.5 units/s).

    Notes
    -----
    Per-frame processing and ``reset()`` are serialized by an internal lock;
    the tracker may run on its own thread alongside the IMU pipeline.
    """

    def __init__(self, config=None):
        self.config = config if config is not None else FeatureTrackerConfig()
        self._lock = threading.RLock()
        self._history = deque(maxlen=self.config.history_size)
        self._initialize()

    def _initialize(self):
        self._previous_features = ()
        self._history.clear()
        self._x = 0.0
        self._y = 0.0
        self._depth = self.config.initial_depth
        self._vx = 0.0
        self._vy = 0.0
        self._frame_count = 0

    @property
    def is_tracking(self):
        """False until a frame has been decoded (Idle), True afterwards."""
        with self._lock:
            return self._frame_count > 0

    @property
    def history(self):
        """Recent feature sets, newest first (visualization only)."""
        with self._lock:
            return tuple(self._history)

    @property
    def position(self):
        with self._lock:
            return (self._x, self._y, self._depth)

    @property
    def velocity(self):
        with self._lock:
            return (self._vx, self._vy)

    # ------------------------------------------------------------------ #
    # Detection
    # ------------------------------------------------------------------ #
    def detect_features(self, luma, width, height):
        """
        Detect scored features in a luminance frame.

        Returns
        -------
        tuple of FeaturePoint
            At most ``max_features`` points, strongest first.

        Raises
        ------
        FrameDecodeError
            If the buffer cannot be decoded.
        """
        return self._detect_in_image(decode_luma(luma, width, height))

    def _detect_in_image(self, image):
        cfg = self.config
        height, width = image.shape

        # Interior grid
        grid_ys, grid_xs = np.meshgrid(
            np.arange(cfg.grid_pitch, height - cfg.grid_pitch, cfg.grid_pitch),
            np.arange(cfg.grid_pitch, width - cfg.grid_pitch, cfg.grid_pitch),
            indexing="ij",
        )
        xs = grid_xs.ravel()
        ys = grid_ys.ravel()
        scores = corner_scores(image, xs, ys)
        keep = scores > cfg.interior_threshold
        candidates = [(xs[keep], ys[keep], scores[keep])]

        # Border band, where the interior grid misses edge texture
        m = cfg.border_margin
        along_x = np.arange(m, width - m, cfg.border_step)
        along_y = np.arange(m, height - m, cfg.border_step)
        bxs = np.concatenate(
            [along_x, along_x, np.full(len(along_y), m), np.full(len(along_y), width - m)]
        )
        bys = np.concatenate(
            [np.full(len(along_x), m), np.full(len(along_x), height - m), along_y, along_y]
        )
        if len(bxs):
            border_scores = corner_scores(image, bxs, bys)
            keep = border_scores > cfg.border_threshold
            candidates.append((bxs[keep], bys[keep], border_scores[keep]))

        xs = np.concatenate([c[0] for c in candidates])
        ys = np.concatenate([c[1] for c in candidates])
        scores = np.concatenate([c[2] for c in candidates])

        order = np.argsort(-scores, kind="stable")[: cfg.max_features]
        features = tuple(
            FeaturePoint(float(xs[i]), float(ys[i]), float(scores[i])) for i in order
        )
        logger.debug(f"Detected {len(features)} features")
        return features

    # ------------------------------------------------------------------ #
    # Matching and outlier rejection
    # ------------------------------------------------------------------ #
    def match(self, current, previous):
        """
        Nearest-neighbour correspondence between two feature sets.

        Parameters
        ----------
        current, previous : sequence of FeaturePoint

        Returns
        -------
        list of (FeaturePoint, FeaturePoint)
            ``(current, previous)`` pairs. Only the strongest
            ``max_match_candidates`` current points are considered; each is
            paired with the closest previous point strictly within
            ``match_radius`` or left unmatched.
        """
        if not current or not previous:
            return []
        candidates = sorted(current, key=lambda p: p.score, reverse=True)
        candidates = candidates[: self.config.max_match_candidates]

        cur_xy = np.array([(p.x, p.y) for p in candidates], dtype=float)
        prev_xy = np.array([(p.x, p.y) for p in previous], dtype=float)
        d2 = ((cur_xy[:, None, :] - prev_xy[None, :, :]) ** 2).sum(axis=2)
        best = np.argmin(d2, axis=1)
        best_d2 = d2[np.arange(len(candidates)), best]
        within = best_d2 < self.config.match_radius**2
        return [(candidates[i], previous[best[i]]) for i in np.flatnonzero(within)]

    def filter_outliers(self, matches):
        """
        Median-flow outlier rejection.

        A match is kept when its flow magnitude is within ``outlier_tolerance``
        of the median magnitude and no larger than 3 × ``max_flow_per_frame``.

        Parameters
        ----------
        matches : sequence of (FeaturePoint, FeaturePoint)

        Returns
        -------
        list of (FeaturePoint, FeaturePoint)
            Surviving matches in their original order.
        """
        if not matches:
            return []
        flows = flow_vectors(matches)
        magnitudes = np.hypot(flows[:, 0], flows[:, 1])
        median_magnitude = np.median(magnitudes)
        keep = (np.abs(magnitudes - median_magnitude) <= self.config.outlier_tolerance) & (
            magnitudes <= 3.0 * self.config.max_flow_per_frame
        )
        filtered = [m for m, k in zip(matches, keep) if k]
        logger.debug(f"Outlier rejection kept {len(filtered)}/{len(matches)} matches")
        return filtered

    # ------------------------------------------------------------------ #
    # Motion estimation
    # ------------------------------------------------------------------ #
    def estimate_motion(self, matches, prior_depth):
        """
        Convert the consensus flow of filtered matches into a world displacement.

        Updates the smoothed velocity held by the tracker.

        Parameters
        ----------
        matches : sequence of (FeaturePoint, FeaturePoint)
            Inlier matches, typically from ``filter_outliers``.
        prior_depth : float
            Depth used for the pixel-to-world conversion.

        Returns
        -------
        MotionEstimate
            Displacement to integrate this frame and the nudged depth.

        Notes
        -----
        Depth is not observable from 2-D flow; it is only blended toward
        ``nominal_depth`` on every call.
        """
        cfg = self.config
        stats = flow_statistics(matches)
        flow_dx, flow_dy = stats.dx, stats.dy

        magnitude = math.hypot(flow_dx, flow_dy)
        if magnitude < cfg.noise_floor:
            flow_dx = flow_dy = 0.0
        elif magnitude > cfg.max_flow_per_frame:
            ratio = cfg.max_flow_per_frame / magnitude
            flow_dx *= ratio
            flow_dy *= ratio

        move_x = flow_dx * prior_depth / cfg.focal_length
        move_y = flow_dy * prior_depth / cfg.focal_length

        with self._lock:
            alpha = cfg.velocity_smoothing
            vx = alpha * self._vx + (1.0 - alpha) * move_x / cfg.frame_time
            vy = alpha * self._vy + (1.0 - alpha) * move_y / cfg.frame_time
            self._vx = float(np.clip(vx, -cfg.max_velocity, cfg.max_velocity))
            self._vy = float(np.clip(vy, -cfg.max_velocity, cfg.max_velocity))
            dx = self._vx * cfg.frame_time
            dy = self._vy * cfg.frame_time

        depth = cfg.depth_blend * prior_depth + (1.0 - cfg.depth_blend) * cfg.nominal_depth
        return MotionEstimate(dx=dx, dy=dy, depth=depth, flow_dx=flow_dx, flow_dy=flow_dy)

    # ------------------------------------------------------------------ #
    # Per-frame entry point
    # ------------------------------------------------------------------ #
    def detect(self, luma, width, height):
        """
        Process one camera frame.

        Parameters
        ----------
        luma : bytes or array_like
            Row-major 8-bit luminance buffer, length ≥ ``width * height``.
        width, height : int
            Frame dimensions.

        Returns
        -------
        FeatureDetectionResult
            Features, inlier matches and the integrated position. When the
            frame cannot be decoded the result has no features or matches;
            with fewer than ``min_matches`` inliers the position is held.
        """
        start = time.perf_counter()
        with self._lock:
            try:
                image = decode_luma(luma, width, height)
            except FrameDecodeError as e:
                logger.warning(f"Dropping undecodable frame: {e}")
                return FeatureDetectionResult(
                    x=self._x,
                    y=self._y,
                    z=self._depth,
                    processing_time_ms=(time.perf_counter() - start) * 1000.0,
                )

            features = self._detect_in_image(image)
            self._frame_count += 1
            self._history.appendleft(features)

            raw_matches = self.match(features, self._previous_features)
            inliers = self.filter_outliers(raw_matches)

            if len(inliers) >= self.config.min_matches:
                estimate = self.estimate_motion(inliers, self._depth)
                self._x += estimate.dx
                self._y += estimate.dy
                self._depth = estimate.depth
            elif self._previous_features:
                logger.debug(
                    f"Only {len(inliers)} inlier matches, holding position"
                )

            self._previous_features = features
            logger.debug(
                f"Features: {len(features)}, Matches: {len(inliers)}, "
                f"Pos: ({self._x:.2f}, {self._y:.2f})"
            )
            return FeatureDetectionResult(
                features=features,
                matches=tuple(inliers),
                x=self._x,
                y=self._y,
                z=self._depth,
                raw_match_count=len(raw_matches),
                processing_time_ms=(time.perf_counter() - start) * 1000.0,
            )

    def reset(self):
        """Clear history and previous features; zero position and velocity."""
        with self._lock:
            self._initialize()
        logger.info("Feature tracker reset")
