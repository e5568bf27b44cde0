#!/usr/bin/env python3
"""
Inertial Dead Reckoning.

The simplest pose estimator in the package: it integrates accelerometer
magnitude and gyroscope yaw rate without any external correction, and serves
as the baseline the EKF-SLAM and visual estimates are compared against.

Each IMU sample is turned into a forward displacement and a heading change

    s  = ‖(a_x, a_y)‖ · Δt · k
    Δθ = ω_z · Δt

and applied with the shared body-frame motion model

    x_{t+1} = x_t + s · cos(θ_t)
    y_{t+1} = y_t + s · sin(θ_t)
    θ_{t+1} = wrap(θ_t + Δθ)

Error Characteristics
---------------------
Dead reckoning has no feedback, so bias and noise accumulate without bound.
Gravity along z is ignored (only the planar acceleration magnitude is used),
which makes a stationary, level device report no motion.
"""

import logging
import math
import threading

from slam_fusion.utils.geometry import Pose2D, compose

logger = logging.getLogger(__name__)


class DeadReckoning:
    """
    Planar IMU integrator.

    Parameters
    ----------
    speed_gain : float, optional
        Gain k applied to ‖a_xy‖·Δt to obtain the forward displacement.
        Default: 0.5.

    Examples
    --------
    >>> dr = DeadReckoning()
    >>> dr.integrate(ax=0.0, ay=0.0, gz=0.0, dt=0.1)
    Pose2D(x=0.0, y=0.0, theta=0.0)
    """

    def __init__(self, speed_gain=0.5):
        self.speed_gain = speed_gain
        self._lock = threading.RLock()
        self._pose = Pose2D()

    @property
    def pose(self):
        with self._lock:
            return self._pose

    @staticmethod
    def motion_from_imu(ax, ay, gz, dt, speed_gain=0.5):
        """
        Forward displacement and heading change for one IMU sample.

        Returns
        -------
        tuple of float
            ``(speed, dtheta)``.
        """
        speed = math.hypot(ax, ay) * dt * speed_gain
        return speed, gz * dt

    def integrate(self, ax, ay, gz, dt):
        """
        Integrate one IMU sample into the pose.

        Parameters
        ----------
        ax, ay : float
            Planar acceleration (m/s²).
        gz : float
            Yaw rate (rad/s).
        dt : float
            Sample period (s). Non-positive values leave the pose unchanged.

        Returns
        -------
        Pose2D
            Pose after the sample.
        """
        with self._lock:
            if not dt > 0:
                return self._pose
            speed, dtheta = self.motion_from_imu(ax, ay, gz, dt, self.speed_gain)
            self._pose = compose(self._pose, speed, 0.0, dtheta)
            return self._pose

    def reset(self):
        with self._lock:
            self._pose = Pose2D()
        logger.debug("Dead reckoning reset")
