"""
Core panoramic Bundle Adjustment components
"""

from .exceptions import (
    PanoramaBAError,
    ConfigurationError,
    UnsupportedCameraModelError,
    InvariantViolationError,
)
from .sfm_data import (
    CameraPose,
    RigSubPoseStatus,
    RigSubPose,
    Rig,
    View,
    Constraint2D,
    RotationPrior,
    SfMData,
)

__all__ = [
    "PanoramaBAError",
    "ConfigurationError",
    "UnsupportedCameraModelError",
    "InvariantViolationError",
    "CameraPose",
    "RigSubPoseStatus",
    "RigSubPose",
    "Rig",
    "View",
    "Constraint2D",
    "RotationPrior",
    "SfMData",
]
