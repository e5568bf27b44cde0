"""Camera-based motion estimation: feature tracking and visual odometry."""

from .feature_tracker import FeatureDetectionResult, FeatureTracker
from .visual_odometry import MapPoint, VisualOdometryEstimator, VisualPose

__all__ = [
    "FeatureDetectionResult",
    "FeatureTracker",
    "MapPoint",
    "VisualOdometryEstimator",
    "VisualPose",
]
