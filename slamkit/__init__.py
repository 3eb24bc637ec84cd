"""Building blocks for visual SLAM: geometry, Lie groups, matching, pose estimation and mapping."""

__version__ = "0.1.0"