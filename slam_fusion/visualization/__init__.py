"""Trajectory plotting and marimo notebook controls."""

from .trajectory import TrajectoryRecorder

__all__ = ["TrajectoryRecorder"]
