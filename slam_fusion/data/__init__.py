"""Recorded sensor log loading and replay."""

from .reader import ImuLogReader

__all__ = ["ImuLogReader"]
