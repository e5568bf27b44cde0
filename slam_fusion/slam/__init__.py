"""Feature-based EKF-SLAM with range-bearing landmark measurements."""

from .ekf_slam import EkfSlamEngine, Landmark, SlamSnapshot

__all__ = ["EkfSlamEngine", "Landmark", "SlamSnapshot"]
