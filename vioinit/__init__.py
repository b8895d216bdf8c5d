"""Visual-inertial odometry building blocks: settings, quaternions, IMU pre-integration, feature bookkeeping, alignment, epipolar geometry and extrinsic rotation calibration."""

__version__ = "0.1.0"

__all__ = [
    "alignment",
    "config",
    "epipolar",
    "ex_rotation",
    "feature_manager",
    "integration",
    "quaternion",
]