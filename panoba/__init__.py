"""
Panoramic Bundle Adjustment Package
Rotation-only refinement of camera networks, rig sub-poses and intrinsics
"""

__version__ = "0.1.0"


# Lazy imports so that `import panoba` stays cheap
def __getattr__(name):
    """Lazy import for module attributes"""

    if name == "BundleAdjustmentPanorama":
        from .core.panorama_ba import BundleAdjustmentPanorama
        return BundleAdjustmentPanorama
    elif name == "BundleAdjustmentPanoramaConfig":
        from .core.panorama_ba import BundleAdjustmentPanoramaConfig
        return BundleAdjustmentPanoramaConfig
    elif name == "RefineOptions":
        from .core.panorama_ba import RefineOptions
        return RefineOptions
    elif name == "ParameterState":
        from .core.panorama_ba import ParameterState
        return ParameterState
    elif name == "SfMData":
        from .core.sfm_data import SfMData
        return SfMData

    raise AttributeError(f"module '{__name__}' has no attribute '{name}'")


__all__ = [
    "BundleAdjustmentPanorama",
    "BundleAdjustmentPanoramaConfig",
    "RefineOptions",
    "ParameterState",
    "SfMData",
]
