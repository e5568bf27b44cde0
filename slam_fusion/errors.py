"""
Exception types shared by the estimation modules.

Only ``DimensionMismatch`` is meant to escape to callers; it signals a coding
defect (inconsistent matrix shapes in Jacobian construction). The other
errors are raised internally and recovered where they occur so that the
estimators always return a best-effort snapshot.
"""


class SlamFusionError(Exception):
    """Base class for all slam_fusion errors."""


class DimensionMismatch(SlamFusionError, ValueError):
    """Matrix shapes are inconsistent with the requested operation."""


class FrameDecodeError(SlamFusionError):
    """A luminance frame buffer is malformed or cannot be accessed."""


class DegenerateMeasurement(SlamFusionError):
    """A range-bearing measurement cannot be linearized (range too small or not finite)."""
