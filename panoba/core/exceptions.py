"""
Exception classes for panoramic bundle adjustment

Distinguishes configuration problems (reported, the run fails cleanly) from
data-integrity violations (programming faults, never tolerated).
"""


class PanoramaBAError(Exception):
    """Base class for all bundle adjustment errors"""


class ConfigurationError(PanoramaBAError):
    """
    The camera network asks for something the engine cannot model.

    Raised while building the problem; `adjust()` reports it and returns
    a failure without touching the camera network.
    """


class UnsupportedCameraModelError(ConfigurationError):
    """
    A 2D constraint references a camera model with no reprojection functor.

    Attributes:
    -----------
    intrinsic_id : int
        Identifier of the offending intrinsic
    model : str
        Name of the camera model
    """

    def __init__(self, intrinsic_id, model):
        self.intrinsic_id = intrinsic_id
        self.model = model
        super().__init__(
            f"Incompatible camera for a 2D constraint "
            f"(intrinsic {intrinsic_id}, model '{model}')"
        )


class InvariantViolationError(PanoramaBAError):
    """
    The camera network contradicts the problem being built.

    Examples: a constraint endpoint whose pose was never added to the
    problem (IGNORED state), or the two endpoints of a correspondence
    not sharing the same intrinsic block.
    """
