"""Dead reckoning, EKF-SLAM and visual odometry pose estimation with fusion."""

__version__ = "0.1.0"
