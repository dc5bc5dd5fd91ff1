"""
Panoramic Bundle Adjustment module

Refines camera orientations, rig sub-pose offsets and intrinsics of a
rotation-only camera network from pairwise 2D constraints and relative
rotation priors.

Key Features:
- SO(3) manifold updates of every rotation block
- Selective locking of focal / optical center / distortion
- Rig aware residuals (no rig, one rig, two rigs, shared sub-pose)
- Per-run statistics with CSV-like export

Usage:
    from panoba.core.panorama_ba import BundleAdjustmentPanorama, RefineOptions

    ba = BundleAdjustmentPanorama(config)
    ba.set_pose_states(pose_states)
    success = ba.adjust(sfm_data, RefineOptions.ROTATION | RefineOptions.FOCAL)
    ba.get_statistics().show()
"""

from .config import BundleAdjustmentPanoramaConfig, SolverConfig
from .statistics import EParameter, ParameterState, Statistics
from .cost_functions import (
    RigConfiguration,
    ReprojectionCost,
    PinholeReprojectionCost,
    EquidistantReprojectionCost,
    RotationPriorCost,
)
from .optimizer import BundleAdjustmentPanorama, ProblemContext, RefineOptions

__all__ = [
    # Configuration
    "BundleAdjustmentPanoramaConfig",
    "SolverConfig",

    # Statistics
    "EParameter",
    "ParameterState",
    "Statistics",

    # Residuals
    "RigConfiguration",
    "ReprojectionCost",
    "PinholeReprojectionCost",
    "EquidistantReprojectionCost",
    "RotationPriorCost",

    # Main optimizer
    "BundleAdjustmentPanorama",
    "ProblemContext",
    "RefineOptions",
]
