"""
Configuration management for panoramic Bundle Adjustment

Uses dataclasses for type safety and validation.
"""

from dataclasses import dataclass, field
from typing import Dict, Any


@dataclass
class SolverConfig:
    """Configuration for the nonlinear least-squares solver"""

    # Linear solver: "dense" or "sparse" (falls back to dense if unavailable)
    linear_solver: str = "dense"

    # Iteration cap
    max_num_iterations: int = 300

    # Requested threads (residual evaluation always runs on 1)
    nb_threads: int = 1

    # Convergence tolerances
    function_tolerance: float = 1e-6
    gradient_tolerance: float = 1e-10
    parameter_tolerance: float = 1e-8

    # Print minimizer progress
    verbose: bool = False

    # Log the full solver report after each run
    summary: bool = False

    def __post_init__(self):
        """Validate configuration"""
        if self.linear_solver not in ["dense", "sparse"]:
            raise ValueError(f"Invalid linear_solver: {self.linear_solver}")
        if self.max_num_iterations <= 0:
            raise ValueError(f"max_num_iterations must be positive, got {self.max_num_iterations}")
        if self.nb_threads <= 0:
            raise ValueError(f"nb_threads must be positive, got {self.nb_threads}")


@dataclass
class BundleAdjustmentPanoramaConfig:
    """Main configuration for panoramic Bundle Adjustment"""

    solver: SolverConfig = field(default_factory=SolverConfig)

    # Robust loss on 2D constraints: "huber", "cauchy" or "trivial"
    loss: str = "huber"
    loss_scale: float = 64.0

    # Optical center refined with IF_ENOUGH_DATA above this view count
    min_nb_images_to_refine_optical_center: int = 3

    # Focal bounds around the initial guess, fraction of max(width, height)
    focal_margin_ratio: float = 0.2

    # Optical center offset bounds, fraction of width / height
    optical_center_margin_ratio: float = 0.05

    # Logging level: "DEBUG", "INFO", "WARNING", "ERROR"
    log_level: str = "INFO"

    def __post_init__(self):
        """Validate configuration"""
        if self.loss not in ["huber", "cauchy", "trivial"]:
            raise ValueError(f"Invalid loss: {self.loss}")

        if self.loss_scale <= 0:
            raise ValueError(f"loss_scale must be positive, got {self.loss_scale}")

        if not (0.0 <= self.focal_margin_ratio <= 1.0):
            raise ValueError(f"focal_margin_ratio must be in [0, 1], got {self.focal_margin_ratio}")

        if not (0.0 < self.optical_center_margin_ratio <= 0.5):
            raise ValueError(
                f"optical_center_margin_ratio must be in (0, 0.5], got {self.optical_center_margin_ratio}"
            )

        if self.log_level not in ["DEBUG", "INFO", "WARNING", "ERROR"]:
            raise ValueError(f"Invalid log_level: {self.log_level}")

    @classmethod
    def from_dict(cls, config_dict: Dict[str, Any]) -> "BundleAdjustmentPanoramaConfig":
        """Create config from dictionary (for CLI/JSON loading)"""
        config_dict = dict(config_dict)
        solver = SolverConfig(**config_dict.pop("solver", {}))
        return cls(solver=solver, **config_dict)

    def to_dict(self) -> Dict[str, Any]:
        """Export config to dictionary"""
        return {
            "solver": dict(self.solver.__dict__),
            "loss": self.loss,
            "loss_scale": self.loss_scale,
            "min_nb_images_to_refine_optical_center": self.min_nb_images_to_refine_optical_center,
            "focal_margin_ratio": self.focal_margin_ratio,
            "optical_center_margin_ratio": self.optical_center_margin_ratio,
            "log_level": self.log_level,
        }
