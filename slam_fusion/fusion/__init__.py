"""Dead reckoning, multi-source pose fusion and frame processing."""

from .dead_reckoning import DeadReckoning
from .fusion_engine import FusionEngine, FusionResult
from .pipeline import LatestFrameProcessor, LumaFrame

__all__ = [
    "DeadReckoning",
    "FusionEngine",
    "FusionResult",
    "LatestFrameProcessor",
    "LumaFrame",
]
