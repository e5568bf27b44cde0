"""
Planar pose primitives shared by every estimator.

The motion model used by dead reckoning and by the EKF prediction step is
the body-frame displacement form:

    x' = x + dx·cos(θ) - dy·sin(θ)
    y' = y + dx·sin(θ) + dy·cos(θ)
    θ' = wrap(θ + dθ)

Headings are always wrapped to the half-open interval (-π, π].
"""

import math
from dataclasses import dataclass

TWO_PI = 2.0 * math.pi


def normalize_angle(angle):
    """
    Wrap an angle to (-π, π].

    Values already inside the interval are returned unchanged, so
    normalizing twice (or normalizing a blend of normalized angles that stays
    in range) never perturbs the value.

    Parameters
    ----------
    angle : float
        Angle in radians.

    Returns
    -------
    float
        Equivalent angle in (-π, π].
    """
    angle = float(angle)
    if -math.pi < angle <= math.pi:
        return angle
    if not math.isfinite(angle):
        return angle
    wrapped = math.fmod(angle + math.pi, TWO_PI)
    if wrapped <= 0.0:
        wrapped += TWO_PI
    # wrapped is in (0, 2π]
    return wrapped - math.pi


@dataclass(frozen=True)
class Pose2D:
    """Planar pose: position (x, y) and heading theta in (-π, π]."""

    x: float = 0.0
    y: float = 0.0
    theta: float = 0.0

    def __post_init__(self):
        object.__setattr__(self, "x", float(self.x))
        object.__setattr__(self, "y", float(self.y))
        object.__setattr__(self, "theta", normalize_angle(self.theta))

    def distance_to(self, other):
        """Euclidean distance between the positions of two poses."""
        return math.hypot(self.x - other.x, self.y - other.y)

    def as_tuple(self):
        return (self.x, self.y, self.theta)


def compose(pose, dx, dy, dtheta):
    """
    Apply a body-frame displacement to a pose.

    Parameters
    ----------
    pose : Pose2D
        Pose before the motion.
    dx, dy : float
        Displacement along the body x (forward) and y (left) axes.
    dtheta : float
        Heading change in radians.

    Returns
    -------
    Pose2D
        Pose after the motion, heading wrapped.
    """
    c = math.cos(pose.theta)
    s = math.sin(pose.theta)
    return Pose2D(
        pose.x + dx * c - dy * s,
        pose.y + dx * s + dy * c,
        pose.theta + dtheta,
    )
