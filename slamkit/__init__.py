"""Geometry building blocks for feature-based visual SLAM: pose conversions,
frames, two-view initialisation, plane detection and sequence loaders."""

__version__ = "0.1.0"

__all__ = [
    "converter",
    "frame",
    "initializer",
    "mono_sequences",
    "plane",
    "stereo_sequences",
    "two_view",
]