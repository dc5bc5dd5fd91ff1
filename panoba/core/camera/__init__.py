"""
Camera models for panoramic bundle adjustment
"""

from .distortion import DistortionModel, RadialK1, RadialK3, Brown, make_distortion
from .models import (
    IntrinsicType,
    Intrinsic,
    ScaleOffsetModel,
    PinholeModel,
    EquidistantModel,
    make_camera_model,
)

__all__ = [
    "DistortionModel",
    "RadialK1",
    "RadialK3",
    "Brown",
    "make_distortion",
    "IntrinsicType",
    "Intrinsic",
    "ScaleOffsetModel",
    "PinholeModel",
    "EquidistantModel",
    "make_camera_model",
]
