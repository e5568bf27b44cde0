#!/usr/bin/env python3
"""
Reduced-Fidelity Visual Odometry.

A lightweight camera pose estimator that integrates 2-D feature flow
directly into a planar pose and yaw, without explicit landmarks. It runs its
own sparse grid detector and nearest-neighbour matcher, independent of
``FeatureTracker``.

Estimation Model
----------------
Given matches (current, previous) between consecutive frames:

    x += mean(Δu) · s_t
    y += mean(Δv) · s_t
    yaw = wrap(yaw + s_ψ · Σ_{i<n} (u_i - u_c)(v_i - v_c))

where s_t and s_ψ are small fixed scales and (u_c, v_c) is the frame centre.
The yaw term is a second-moment statistic of the feature layout, not a
geometric rotation estimate.

The vertical coordinate z is a low-amplitude sinusoid of wall-clock time,
a stand-in for unmodelled vertical motion. It carries no image information.

Tracking Quality
----------------
The match-to-feature ratio is banded: ≥0.7 → 0.9, ≥0.4 → 0.6, ≥0.2 → 0.3,
otherwise 0.1, and 0.0 without features. The estimator is tracking when the
quality exceeds 0.3.

Map Points
----------
While tracking, every N-th frame with enough matches records a 3-D map point
at the current pose (minimum spacing, bounded capacity). These are the only
points produced by tracking. For display parity a deterministic ring of
synthetic points around the pose is generated when too few real points exist
after warm-up; synthetic points are flagged and never mixed into
``map_points()``.
"""

import logging
import math
import threading
import time
from dataclasses import dataclass

import numpy as np

from slam_fusion.config import VisualOdometryConfig
from slam_fusion.errors import FrameDecodeError
from slam_fusion.utils.geometry import Pose2D, normalize_angle
from slam_fusion.vision.feature_tracker import FeaturePoint, decode_luma

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MapPoint:
    """3-D point for visualization; ``synthetic`` marks display-only points."""

    x: float
    y: float
    z: float
    synthetic: bool = False


@dataclass(frozen=True)
class VisualPose:
    """Visual odometry pose. Pitch and roll are not estimated and stay at 0."""

    x: float = 0.0
    y: float = 0.0
    z: float = 0.0
    yaw: float = 0.0
    pitch: float = 0.0
    roll: float = 0.0

    def to_pose2d(self):
        return Pose2D(self.x, self.y, self.yaw)


@dataclass(frozen=True)
class VisualOdometryResult:
    """Per-frame output of ``VisualOdometryEstimator.process_frame``."""

    pose: VisualPose
    is_tracking: bool
    tracking_quality: float
    features_detected: int
    matches: int
    frame_count: int
    map_point_count: int


def tracking_quality(feature_count, match_count):
    """
    Banded tracking quality from the match-to-feature ratio.

    Returns
    -------
    float
        0.9, 0.6, 0.3 or 0.1; 0.0 when no features were detected.
    """
    if feature_count <= 0:
        return 0.0
    ratio = match_count / feature_count
    if ratio >= 0.7:
        return 0.9
    if ratio >= 0.4:
        return 0.6
    if ratio >= 0.2:
        return 0.3
    return 0.1


class VisualOdometryEstimator:
    """
    Camera pose from frame-to-frame feature flow.

    Parameters
    ----------
    config : VisualOdometryConfig, optional
        Detector, matcher and integration constants (reference: grid pitch
        20 px, corner threshold 50, match radius 30 px, translation scale
        0.001, yaw scale 1e-6).
    clock : callable, optional
        Returns wall-clock seconds; drives the synthetic z term.
        Default: ``time.time``.

    Notes
    -----
    ``process_frame``, accessors and ``reset`` are serialized by an internal
    lock, so the estimator can be fed from a camera thread while the fusion
    engine reads its pose from the IMU thread.
    """

    def __init__(self, config=None, clock=time.time):
        self.config = config if config is not None else VisualOdometryConfig()
        self._clock = clock
        self._lock = threading.RLock()
        self._initialize()
        logger.info("Visual odometry initialized")

    def _initialize(self):
        self._x = 0.0
        self._y = 0.0
        self._z = 0.0
        self._yaw = 0.0
        self._is_tracking = False
        self._quality = 0.0
        self._frame_count = 0
        self._previous_features = ()
        self._last_feature_count = 0
        self._last_match_count = 0
        self._map_points = []

    # ------------------------------------------------------------------ #
    # Accessors
    # ------------------------------------------------------------------ #
    @property
    def is_tracking(self):
        with self._lock:
            return self._is_tracking

    @property
    def quality(self):
        with self._lock:
            return self._quality

    @property
    def frame_count(self):
        with self._lock:
            return self._frame_count

    def get_pose(self):
        """Current ``VisualPose`` snapshot."""
        with self._lock:
            return VisualPose(self._x, self._y, self._z, self._yaw)

    def result(self):
        with self._lock:
            return VisualOdometryResult(
                pose=self.get_pose(),
                is_tracking=self._is_tracking,
                tracking_quality=self._quality,
                features_detected=self._last_feature_count,
                matches=self._last_match_count,
                frame_count=self._frame_count,
                map_point_count=len(self._map_points),
            )

    def tracking_status(self):
        with self._lock:
            if self._is_tracking:
                return f"Tracking ({int(self._quality * 100)}%)"
            return "Lost"

    def debug_info(self):
        with self._lock:
            return {
                "frameCount": self._frame_count,
                "tracking": self._is_tracking,
                "trackingQuality": self._quality,
                "mapPoints": len(self._map_points),
                "position": {"x": self._x, "y": self._y, "z": self._z},
                "rotation": {"yaw": self._yaw, "pitch": 0.0, "roll": 0.0},
            }

    # ------------------------------------------------------------------ #
    # Detection and matching
    # ------------------------------------------------------------------ #
    def detect_features(self, image):
        """
        Sparse grid corner detection.

        The score is ``min(horizontal, vertical)`` absolute luminance
        difference to the left/right and top/bottom neighbours; a corner has
        strong gradients in both directions.

        Parameters
        ----------
        image : ndarray of shape (height, width)
            Integer luminance image.

        Returns
        -------
        list of FeaturePoint
            Grid points scoring above ``corner_threshold`` in row-major order.
        """
        cfg = self.config
        height, width = image.shape
        ys, xs = np.meshgrid(
            np.arange(cfg.grid_pitch, height - cfg.grid_pitch, cfg.grid_pitch),
            np.arange(cfg.grid_pitch, width - cfg.grid_pitch, cfg.grid_pitch),
            indexing="ij",
        )
        ys = ys.ravel()
        xs = xs.ravel()
        if len(xs) == 0:
            return []
        center = image[ys, xs]
        horizontal = np.abs(center - image[ys, xs - 1]) + np.abs(center - image[ys, xs + 1])
        vertical = np.abs(center - image[ys - 1, xs]) + np.abs(center - image[ys + 1, xs])
        scores = np.minimum(horizontal, vertical)
        keep = np.flatnonzero(scores > cfg.corner_threshold)
        return [FeaturePoint(float(xs[i]), float(ys[i]), float(scores[i])) for i in keep]

    def match(self, current, previous):
        """
        Nearest previous feature within ``match_radius`` for each of the
        first ``max_match_candidates`` current features.
        """
        n = self.config.max_match_candidates
        current = list(current)[:n]
        previous = list(previous)[:n]
        if not current or not previous:
            return []
        cur_xy = np.array([(p.x, p.y) for p in current])
        prev_xy = np.array([(p.x, p.y) for p in previous])
        d2 = ((cur_xy[:, None, :] - prev_xy[None, :, :]) ** 2).sum(axis=2)
        best = np.argmin(d2, axis=1)
        within = d2[np.arange(len(current)), best] < self.config.match_radius**2
        return [(current[i], previous[best[i]]) for i in np.flatnonzero(within)]

    # ------------------------------------------------------------------ #
    # Per-frame update
    # ------------------------------------------------------------------ #
    def process_frame(self, luma, width, height):
        """
        Update the visual pose from one luminance frame.

        Returns
        -------
        VisualOdometryResult
            State after the frame. An undecodable frame leaves the state
            untouched (it is not counted).
        """
        try:
            image = decode_luma(luma, width, height)
        except FrameDecodeError as e:
            logger.warning(f"Visual odometry dropping frame: {e}")
            return self.result()

        with self._lock:
            self._frame_count += 1
            features = self.detect_features(image)
            matches = self.match(features, self._previous_features)

            self._integrate(features, matches, width, height)

            self._quality = tracking_quality(len(features), len(matches))
            self._is_tracking = self._quality > self.config.tracking_threshold

            if (
                self._is_tracking
                and self._frame_count % self.config.map_point_interval == 0
                and len(matches) > self.config.map_point_min_matches
            ):
                self._add_map_point(self._x, self._y, self._z)

            self._previous_features = tuple(features)
            self._last_feature_count = len(features)
            self._last_match_count = len(matches)

            if self._frame_count % 30 == 0:
                logger.debug(
                    f"Frame {self._frame_count}: {len(features)} features, "
                    f"{len(matches)} matches, "
                    f"Pos: ({self._x:.2f}, {self._y:.2f}, {self._z:.2f}), "
                    f"Quality: {int(self._quality * 100)}%, "
                    f"Map Points: {len(self._map_points)}"
                )
            return self.result()

    def _integrate(self, features, matches, width, height):
        cfg = self.config
        if len(matches) < cfg.min_matches:
            # Not enough matches: hold the pose
            return

        flows = np.array([(c.x - p.x, c.y - p.y) for c, p in matches])
        self._x += float(np.mean(flows[:, 0])) * cfg.translation_scale
        self._y += float(np.mean(flows[:, 1])) * cfg.translation_scale

        if len(features) > cfg.yaw_min_features:
            center_x = width // 2
            center_y = height // 2
            moment = sum(
                (f.x - center_x) * (f.y - center_y)
                for f in features[: cfg.yaw_feature_subset]
            )
            self._yaw = normalize_angle(self._yaw + moment * cfg.yaw_scale)

        # Cosmetic vertical motion, not derived from the image
        self._z = math.sin(self._clock() / cfg.z_period) * cfg.z_amplitude

    # ------------------------------------------------------------------ #
    # Map points
    # ------------------------------------------------------------------ #
    def _add_map_point(self, x, y, z):
        if len(self._map_points) >= self.config.map_point_capacity:
            return False
        for point in self._map_points:
            if math.dist((x, y, z), (point.x, point.y, point.z)) < self.config.map_point_spacing:
                return False
        self._map_points.append(MapPoint(x, y, z))
        logger.debug(f"Added map point at ({x:.2f}, {y:.2f}, {z:.2f}). Total: {len(self._map_points)}")
        return True

    def map_points(self):
        """Map points recorded while tracking (no synthetic points)."""
        with self._lock:
            return tuple(self._map_points)

    def display_map_points(self):
        """
        Points for visualization.

        Returns the tracked map points, or, once past the warm-up period with
        fewer than ``display_min_points`` of them, a deterministic ring of
        synthetic points around the current pose.
        """
        cfg = self.config
        with self._lock:
            if (
                len(self._map_points) < cfg.display_min_points
                and self._frame_count > cfg.display_warmup_frames
            ):
                return tuple(self._synthetic_ring())
            return tuple(self._map_points)

    def _synthetic_ring(self):
        cfg = self.config
        points = []
        for i in range(cfg.display_ring_size):
            angle = i * 2.0 * math.pi / cfg.display_ring_size
            radius = cfg.display_ring_radius + (i % 3) * 0.5
            points.append(
                MapPoint(
                    self._x + math.cos(angle) * radius,
                    self._y + math.sin(angle) * radius,
                    self._z + math.sin(angle * 2.0) * 0.3,
                    synthetic=True,
                )
            )
        return points

    # ------------------------------------------------------------------ #
    # Fusion helper and lifecycle
    # ------------------------------------------------------------------ #
    def fuse_with_dr(self, dr_pose):
        """
        Convex blend of the visual pose with a dead-reckoning pose.

        The visual weight is the tracking quality clamped to
        [min_visual_weight, max_visual_weight]; DR gets the complement.

        Parameters
        ----------
        dr_pose : Pose2D

        Returns
        -------
        Pose2D
        """
        cfg = self.config
        with self._lock:
            w = min(max(self._quality, cfg.min_visual_weight), cfg.max_visual_weight)
            return Pose2D(
                w * self._x + (1.0 - w) * dr_pose.x,
                w * self._y + (1.0 - w) * dr_pose.y,
                w * self._yaw + (1.0 - w) * dr_pose.theta,
            )

    def reset(self):
        """Zero the pose, forget features and map points, clear tracking state."""
        with self._lock:
            self._initialize()
        logger.info("Visual odometry reset")
