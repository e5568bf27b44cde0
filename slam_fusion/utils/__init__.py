"""Linear algebra, geometry, DataFrame and metrics helpers."""
