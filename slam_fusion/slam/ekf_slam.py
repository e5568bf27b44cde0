#!/usr/bin/env python3
"""
Extended Kalman Filter SLAM with Caller-Supplied Landmark Signatures.

This module implements an incremental EKF-SLAM engine. The robot pose and
every landmark discovered so far share a single Gaussian belief: one state
vector and one joint covariance matrix that grow as new landmarks appear.

Mathematical Foundation
-----------------------
Augmented State Vector:
    y_t = [x, y, θ, m_{0,x}, m_{0,y}, ..., m_{N-1,x}, m_{N-1,y}]^T

Where:
    - (x, y, θ): Robot pose, θ wrapped to (-π, π]
    - (m_{i,x}, m_{i,y}): Global coordinates of landmark i, stored at 3+2i
    - Dimension: 3 + 2N, growing by 2 per newly discovered landmark

Covariance Matrix Structure:
    Σ_t = [ Σ_rr  Σ_rm ]
          [ Σ_mr  Σ_mm ]

Motion Update (Prediction)
--------------------------
Body-frame displacement (dx, dy, dθ):
    x' = x + dx·cos θ - dy·sin θ
    y' = y + dx·sin θ + dy·cos θ
    θ' = wrap(θ + dθ)

Only the robot block is propagated, Σ_rr ← F Σ_rr Fᵀ + Q, with
    F = [[1, 0, -dx·sin θ - dy·cos θ],
         [0, 1,  dx·cos θ - dy·sin θ],
         [0, 0,  1                  ]]
    Q = scale · diag(|dx|, |dy|, |dθ|)
and every landmark variance is inflated by a constant factor to model drift
of landmarks that are not being observed.

Measurement Update (Correction)
-------------------------------
Range-bearing measurement of landmark j:
    r = √q,  q = (m_x - x)² + (m_y - y)²
    φ = wrap(atan2(m_y - y, m_x - x) - θ)

Jacobian (non-zero columns only):
    H = [[-Δx/√q, -Δy/√q,  0,  Δx/√q, Δy/√q],
         [ Δy/q,  -Δx/q,  -1, -Δy/q,  Δx/q ]]
    on columns [x, y, θ, m_{j,x}, m_{j,y}].

    S = H Σ Hᵀ + R
    K = Σ Hᵀ S⁻¹
    y ← y + K (z - ẑ)
    Σ ← sym((I - K H) Σ)

Landmark Lifecycle
------------------
A signature seen for the first time initializes a landmark at
    m = (x + r·cos(θ + φ), y + r·sin(θ + φ))
with a large diagonal prior and zero cross-covariance. Any later
measurement carrying the same signature updates it. Data association is the
caller's responsibility: signatures are opaque and never inferred.

References
----------
.. [1] Thrun, S., Burgard, W., & Fox, D. (2005). Probabilistic Robotics.
       Chapter 10: SLAM with Extended Kalman Filters.
.. [2] Smith, R., Self, M., & Cheeseman, P. (1990). Estimating uncertain
       spatial relationships in robotics. Autonomous Robot Vehicles.

Examples
--------
>>> from slam_fusion.slam.ekf_slam import EkfSlamEngine
>>> slam = EkfSlamEngine()
>>> snapshot = slam.update([(2.0, 0.0, 7)])
>>> snapshot.landmarks[0].x, snapshot.landmarks[0].y
(2.0, 0.0)
>>> snapshot = slam.predict(0.1, 0.0, 0.0)
>>> slam.state_size
5
"""

import logging
import math
import threading
from dataclasses import dataclass
from typing import Hashable

import numpy as np

from slam_fusion.config import EkfSlamConfig
from slam_fusion.errors import DegenerateMeasurement
from slam_fusion.utils.geometry import Pose2D, compose, normalize_angle
from slam_fusion.utils.linalg import (
    identity,
    invert2x2,
    is_degenerate2x2,
    multiply,
    submatrix,
    subtract,
    symmetrize,
    transpose,
)

logger = logging.getLogger(__name__)

ROBOT_SIZE = 3
LANDMARK_SIZE = 2


@dataclass(frozen=True)
class Landmark:
    """
    A mapped landmark: caller signature, global position and observation count.

    The signature is whatever hashable value the caller passed to ``update``.
    """

    id: Hashable
    x: float
    y: float
    observed_count: int


@dataclass(frozen=True)
class SlamSnapshot:
    """
    Read-only view of the EKF-SLAM belief after a predict or update call.

    Attributes
    ----------
    pose : Pose2D
        Robot pose estimate.
    landmarks : tuple of Landmark
        All mapped landmarks in discovery order.
    state_size : int
        Length of the state vector (3 + 2N).
    mean_covariance : float
        Mean of all covariance entries, a coarse uncertainty indicator.
    robot_covariance : ndarray of shape (3, 3)
        Copy of the robot pose covariance block.
    """

    pose: Pose2D
    landmarks: tuple
    state_size: int
    mean_covariance: float
    robot_covariance: np.ndarray

    @property
    def landmark_count(self):
        return len(self.landmarks)


class EkfSlamEngine:
    """
    Incremental EKF-SLAM over range-bearing-signature measurements.

    The engine exclusively owns the state vector, the covariance matrix and
    the signature → landmark index map. Callers only see copies through
    ``snapshot()``, ``state_vector`` and ``covariance``.

    Parameters
    ----------
    config : EkfSlamConfig, optional
        Noise model and initialization constants. Default: reference tuning
        (initial pose variance 0.01, motion noise scale 0.01, landmark prior
        100.0, range noise 0.1, bearing noise 0.05).

    Attributes
    ----------
    config : EkfSlamConfig
        Active configuration.

    Notes
    -----
    Invariants maintained after every public call:

    - ``len(state_vector) == 3 + 2 * landmark_count``
    - ``covariance`` is square with that size and exactly symmetric
    - ``landmark_count`` never decreases until ``reset()``
    - robot heading is wrapped to (-π, π]

    All public methods hold an internal re-entrant lock, so prediction,
    correction, snapshots and reset are serialized against each other.
    """

    def __init__(self, config=None):
        self.config = config if config is not None else EkfSlamConfig()
        self._lock = threading.RLock()
        self.R = np.diag([self.config.range_noise, self.config.bearing_noise])
        self._initialize()
        logger.info("EKF-SLAM initialized")

    def _initialize(self):
        # State: [x, y, θ, lm0_x, lm0_y, ...]
        self._state = np.zeros(ROBOT_SIZE)
        self._sigma = self.config.initial_pose_variance * np.identity(ROBOT_SIZE)
        # Signature -> landmark index (discovery order)
        self._index = {}
        self._signatures = []
        self._observed_counts = []

    # ------------------------------------------------------------------ #
    # Accessors
    # ------------------------------------------------------------------ #
    @property
    def landmark_count(self):
        with self._lock:
            return len(self._signatures)

    @property
    def state_size(self):
        with self._lock:
            return len(self._state)

    @property
    def state_vector(self):
        """Copy of the state vector [x, y, θ, lm0_x, lm0_y, ...]."""
        with self._lock:
            return self._state.copy()

    @property
    def covariance(self):
        """Copy of the joint covariance matrix."""
        with self._lock:
            return self._sigma.copy()

    @property
    def pose(self):
        with self._lock:
            return Pose2D(*self._state[:ROBOT_SIZE])

    def _landmark_offset(self, index):
        """State-vector offset of landmark ``index`` with bounds checking."""
        if not 0 <= index < len(self._signatures):
            raise IndexError(
                f"Landmark index {index} out of range for {len(self._signatures)} landmarks"
            )
        return ROBOT_SIZE + LANDMARK_SIZE * index

    def landmark_position(self, signature):
        """
        Current (x, y) estimate of the landmark with the given signature.

        Raises
        ------
        KeyError
            If the signature has never been observed.
        """
        with self._lock:
            offset = self._landmark_offset(self._index[signature])
            return float(self._state[offset]), float(self._state[offset + 1])

    def landmarks(self):
        """Tuple of ``Landmark`` records in discovery order."""
        with self._lock:
            result = []
            for i, signature in enumerate(self._signatures):
                offset = self._landmark_offset(i)
                result.append(
                    Landmark(
                        id=signature,
                        x=float(self._state[offset]),
                        y=float(self._state[offset + 1]),
                        observed_count=self._observed_counts[i],
                    )
                )
            return tuple(result)

    def snapshot(self):
        """Immutable copy of the current belief."""
        with self._lock:
            return SlamSnapshot(
                pose=Pose2D(*self._state[:ROBOT_SIZE]),
                landmarks=self.landmarks(),
                state_size=len(self._state),
                mean_covariance=float(np.mean(self._sigma)),
                robot_covariance=self._sigma[:ROBOT_SIZE, :ROBOT_SIZE].copy(),
            )

    # ------------------------------------------------------------------ #
    # Motion update
    # ------------------------------------------------------------------ #
    def predict(self, dx, dy, dtheta):
        """
        EKF motion update with a body-frame displacement.

        Parameters
        ----------
        dx, dy : float
            Displacement along the robot's forward and left axes.
        dtheta : float
            Heading change (radians).

        Returns
        -------
        SlamSnapshot
            Belief after the prediction.

        Notes
        -----
        - Landmark means are unchanged; landmark variances are multiplied by
          ``landmark_variance_inflation`` on every call, even for zero motion,
          and capped at ``max_landmark_variance`` so they stay finite.
        - Cross-covariances between robot and landmarks are left as they are.
        - Non-finite inputs are ignored with a warning.
        """
        if not all(math.isfinite(v) for v in (dx, dy, dtheta)):
            logger.warning(f"Ignoring non-finite motion input ({dx}, {dy}, {dtheta})")
            return self.snapshot()

        with self._lock:
            theta = self._state[2]

            # ------------------ Step 1: Mean update ---------------------#
            predicted = compose(Pose2D(*self._state[:ROBOT_SIZE]), dx, dy, dtheta)
            self._state[0] = predicted.x
            self._state[1] = predicted.y
            self._state[2] = predicted.theta

            # ------ Step 2: Linearize motion model by Jacobian ----------#
            F = self._motion_jacobian(dx, dy, theta)

            # ---------------- Step 3: Covariance update -----------------#
            # Σ_rr = F Σ_rr Fᵀ + Q
            sigma_rr = submatrix(self._sigma, (0, 2), (0, 2))
            Q = self.config.motion_noise_scale * np.diag([abs(dx), abs(dy), abs(dtheta)])
            self._sigma[:ROBOT_SIZE, :ROBOT_SIZE] = multiply(
                multiply(F, sigma_rr), transpose(F)
            ) + Q

            # Landmarks not observed drift slowly, up to a ceiling
            for i in range(ROBOT_SIZE, len(self._state)):
                self._sigma[i, i] = min(
                    self._sigma[i, i] * self.config.landmark_variance_inflation,
                    self.config.max_landmark_variance,
                )

            symmetrize(self._sigma)
            return self.snapshot()

    @staticmethod
    def _motion_jacobian(dx, dy, theta):
        s = math.sin(theta)
        c = math.cos(theta)
        return np.array(
            [
                [1.0, 0.0, -dx * s - dy * c],
                [0.0, 1.0, dx * c - dy * s],
                [0.0, 0.0, 1.0],
            ]
        )

    # ------------------------------------------------------------------ #
    # Measurement update
    # ------------------------------------------------------------------ #
    def update(self, measurements):
        """
        Process a batch of range-bearing-signature measurements.

        Parameters
        ----------
        measurements : iterable of (float, float, hashable)
            ``(range, bearing, signature)`` tuples. Bearing is relative to
            the robot heading.

        Returns
        -------
        SlamSnapshot
            Belief after all measurements have been applied in order.

        Notes
        -----
        Unseen signatures initialize a landmark; known signatures run a
        Kalman correction and increment the landmark's observation count.
        Degenerate measurements (range below ``min_range`` or non-finite
        values) are skipped with a warning.
        """
        with self._lock:
            for measurement in measurements:
                range_t, bearing_t, signature = measurement
                try:
                    self._validate_measurement(range_t, bearing_t)
                    if signature in self._index:
                        self._correct(range_t, bearing_t, self._index[signature])
                    else:
                        self._add_landmark(range_t, bearing_t, signature)
                except DegenerateMeasurement as e:
                    logger.warning(f"Skipping measurement of landmark {signature}: {e}")
            return self.snapshot()

    def _validate_measurement(self, range_t, bearing_t):
        if not (math.isfinite(range_t) and math.isfinite(bearing_t)):
            raise DegenerateMeasurement(f"non-finite measurement ({range_t}, {bearing_t})")
        if range_t <= self.config.min_range:
            raise DegenerateMeasurement(
                f"range {range_t} not above minimum {self.config.min_range}"
            )

    def _add_landmark(self, range_t, bearing_t, signature):
        """
        State augmentation for a first observation.

            m_x = x + r·cos(θ + φ)
            m_y = y + r·sin(θ + φ)

        The covariance grows by a 2x2 block with a weak diagonal prior and
        zero cross-covariance; existing entries are preserved.
        """
        x_t, y_t, theta_t = self._state[:ROBOT_SIZE]
        x_l = x_t + range_t * math.cos(theta_t + bearing_t)
        y_l = y_t + range_t * math.sin(theta_t + bearing_t)

        old_size = len(self._state)
        new_size = old_size + LANDMARK_SIZE
        self._state = np.append(self._state, [x_l, y_l])
        sigma = np.zeros((new_size, new_size))
        sigma[:old_size, :old_size] = self._sigma
        sigma[old_size:, old_size:] = self.config.new_landmark_variance * np.identity(
            LANDMARK_SIZE
        )
        self._sigma = sigma

        self._index[signature] = len(self._signatures)
        self._signatures.append(signature)
        self._observed_counts.append(1)
        logger.info(f"New landmark {signature} at ({x_l:.3f}, {y_l:.3f})")

    def expected_measurement(self, index):
        """
        Predicted range and bearing of landmark ``index`` from the current pose.

        Returns
        -------
        tuple
            ``(range, bearing, delta_x, delta_y, q)`` where q is the squared range.

        Raises
        ------
        DegenerateMeasurement
            If the landmark coincides with the robot position.
        """
        with self._lock:
            offset = self._landmark_offset(index)
            x_t, y_t, theta_t = self._state[:ROBOT_SIZE]
            delta_x = self._state[offset] - x_t
            delta_y = self._state[offset + 1] - y_t
            q = delta_x**2 + delta_y**2
            if q <= self.config.min_range**2:
                raise DegenerateMeasurement("landmark coincides with robot position")
            range_expected = math.sqrt(q)
            bearing_expected = normalize_angle(math.atan2(delta_y, delta_x) - theta_t)
            return range_expected, bearing_expected, delta_x, delta_y, q

    def _measurement_jacobian(self, delta_x, delta_y, q, index):
        H = np.zeros((2, len(self._state)))
        sqrt_q = math.sqrt(q)

        # Robot pose derivatives
        H[0, 0] = -delta_x / sqrt_q
        H[0, 1] = -delta_y / sqrt_q
        H[1, 0] = delta_y / q
        H[1, 1] = -delta_x / q
        H[1, 2] = -1.0

        # Landmark derivatives
        offset = self._landmark_offset(index)
        H[0, offset] = delta_x / sqrt_q
        H[0, offset + 1] = delta_y / sqrt_q
        H[1, offset] = -delta_y / q
        H[1, offset + 1] = delta_x / q
        return H

    def _correct(self, range_t, bearing_t, index):
        range_expected, bearing_expected, delta_x, delta_y, q = self.expected_measurement(
            index
        )

        # ---------------- Step 1: Innovation -------------------------#
        innovation = np.array(
            [range_t - range_expected, normalize_angle(bearing_t - bearing_expected)]
        )

        # ------ Step 2: Linearize measurement model by Jacobian ------#
        H = self._measurement_jacobian(delta_x, delta_y, q, index)

        # ---------------- Step 3: Kalman gain ------------------------#
        PHt = multiply(self._sigma, transpose(H))
        S = multiply(H, PHt) + self.R
        self._observed_counts[index] += 1
        if is_degenerate2x2(S, self.config.degenerate_determinant):
            logger.warning(
                f"Singular innovation covariance for landmark {self._signatures[index]}, "
                "skipping correction"
            )
            return
        K = multiply(PHt, invert2x2(S, self.config.degenerate_determinant))

        # ------------------- Step 4: Mean update ---------------------#
        self._state = self._state + K @ innovation
        self._state[2] = normalize_angle(self._state[2])

        # ---------------- Step 5: Covariance update ------------------#
        I_KH = subtract(identity(len(self._state)), multiply(K, H))
        self._sigma = symmetrize(multiply(I_KH, self._sigma))

        logger.debug(
            f"Landmark {self._signatures[index]} innovation "
            f"(dr={innovation[0]:.4f}, dphi={innovation[1]:.4f})"
        )

    def reset(self):
        """Return to the initial state: pose (0, 0, 0), empty map, small pose covariance."""
        with self._lock:
            self._initialize()
        logger.info("EKF-SLAM reset to initial state")
