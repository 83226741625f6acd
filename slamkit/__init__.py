"""RGB-D visual odometry with SE(3) geometry, ORB matching, PnP and pose refinement."""

__version__ = "0.4.0"