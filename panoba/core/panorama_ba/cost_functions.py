"""
Residuals of the panoramic bundle adjustment

Each view orientation is rig_offset * base_rotation (identity offset when
the view does not use its rig). Parameter blocks are ordered

    [pose_i, pose_j, intrinsic?, rig_i?, rig_j if distinct?]

and every Jacobian is expressed w.r.t. the row-major ambient entries of the
blocks; the solver applies the manifolds.
"""

import numpy as np
from enum import Enum
from typing import List, Optional, Sequence

from ..camera.models import (
    EquidistantModel,
    IntrinsicType,
    PinholeModel,
    ScaleOffsetModel,
)
from ..so3 import (
    dlogm_dr,
    jacobian_ab_wrt_a,
    jacobian_ab_wrt_b,
    jacobian_at_wrt_a,
    logm,
)
from ..solver.problem import CostFunction

ROTATION_BLOCK_SIZE = 9
TRANSPOSE_JACOBIAN = jacobian_at_wrt_a(3, 3)


class RigConfiguration(Enum):
    """Which endpoints of a pairwise term go through a rig sub-pose"""

    NO_RIG = "no_rig"
    RIG_FIRST_ONLY = "rig_first_only"
    RIG_SECOND_ONLY = "rig_second_only"
    RIG_BOTH_DISTINCT = "rig_both_distinct"
    RIG_BOTH_SHARED = "rig_both_shared"

    @classmethod
    def resolve(cls, rig_first: Optional[np.ndarray], rig_second: Optional[np.ndarray]) -> "RigConfiguration":
        """Configuration from the rig blocks of both endpoints (None without rig)"""
        if rig_first is None and rig_second is None:
            return cls.NO_RIG
        if rig_second is None:
            return cls.RIG_FIRST_ONLY
        if rig_first is None:
            return cls.RIG_SECOND_ONLY
        if rig_first is rig_second:
            return cls.RIG_BOTH_SHARED
        return cls.RIG_BOTH_DISTINCT

    @property
    def with_rig_first(self) -> bool:
        return self in (RigConfiguration.RIG_FIRST_ONLY, RigConfiguration.RIG_BOTH_DISTINCT, RigConfiguration.RIG_BOTH_SHARED)

    @property
    def with_rig_second(self) -> bool:
        return self in (RigConfiguration.RIG_SECOND_ONLY, RigConfiguration.RIG_BOTH_DISTINCT, RigConfiguration.RIG_BOTH_SHARED)

    @property
    def num_rig_blocks(self) -> int:
        return {RigConfiguration.NO_RIG: 0, RigConfiguration.RIG_BOTH_DISTINCT: 2}.get(self, 1)

    def mirrored(self) -> "RigConfiguration":
        """Configuration of the same term with endpoints swapped"""
        if self == RigConfiguration.RIG_FIRST_ONLY:
            return RigConfiguration.RIG_SECOND_ONLY
        if self == RigConfiguration.RIG_SECOND_ONLY:
            return RigConfiguration.RIG_FIRST_ONLY
        return self

    def rig_slots(self, first_slot: int):
        """Indices of the rig blocks of (first, second) endpoints, None if unused"""
        return {
            RigConfiguration.NO_RIG: (None, None),
            RigConfiguration.RIG_FIRST_ONLY: (first_slot, None),
            RigConfiguration.RIG_SECOND_ONLY: (None, first_slot),
            RigConfiguration.RIG_BOTH_DISTINCT: (first_slot, first_slot + 1),
            RigConfiguration.RIG_BOTH_SHARED: (first_slot, first_slot),
        }[self]

    def parameter_blocks(
        self,
        pose_first: np.ndarray,
        pose_second: np.ndarray,
        rig_first: Optional[np.ndarray],
        rig_second: Optional[np.ndarray],
        intrinsic: Optional[np.ndarray] = None,
    ) -> List[np.ndarray]:
        blocks = [pose_first, pose_second]
        if intrinsic is not None:
            blocks.append(intrinsic)
        if self.with_rig_first:
            blocks.append(rig_first)
        if self.with_rig_second and self != RigConfiguration.RIG_BOTH_SHARED:
            blocks.append(rig_second)
        return blocks


class PanoramaCostFunction(CostFunction):
    """
    Shared rig / pose chain handling for terms between two views.

    Subclasses compute the residual and its derivatives w.r.t. the
    effective orientations of both views; this class spreads them onto the
    pose and rig blocks.
    """

    def __init__(self, num_residuals: int, rig_configuration: RigConfiguration, intrinsic_size: Optional[int] = None):
        super().__init__()
        self.rig_configuration = rig_configuration
        self.intrinsic_slot = 2 if intrinsic_size is not None else None

        sizes = [ROTATION_BLOCK_SIZE, ROTATION_BLOCK_SIZE]
        if intrinsic_size is not None:
            sizes.append(intrinsic_size)
        sizes.extend([ROTATION_BLOCK_SIZE] * rig_configuration.num_rig_blocks)

        self.set_num_residuals(num_residuals)
        self.set_parameter_block_sizes(sizes)
        self.rig_slot_first, self.rig_slot_second = rig_configuration.rig_slots(len(sizes) - rig_configuration.num_rig_blocks)

    def _orientations(self, parameters):
        R_first = np.reshape(parameters[0], (3, 3))
        R_second = np.reshape(parameters[1], (3, 3))
        rig_first = np.eye(3) if self.rig_slot_first is None else np.reshape(parameters[self.rig_slot_first], (3, 3))
        rig_second = np.eye(3) if self.rig_slot_second is None else np.reshape(parameters[self.rig_slot_second], (3, 3))
        return R_first, R_second, rig_first, rig_second

    def _spread_rotation_jacobians(self, d_first, d_second, R_first, R_second, rig_first, rig_second):
        """
        d_first / d_second: derivatives w.r.t. the effective orientations
        rig_first * R_first and rig_second * R_second.
        """
        jacobians: List[Optional[np.ndarray]] = [None] * len(self.parameter_block_sizes)
        jacobians[0] = d_first @ jacobian_ab_wrt_b(rig_first, R_first)
        jacobians[1] = d_second @ jacobian_ab_wrt_b(rig_second, R_second)

        if self.rig_slot_first is not None:
            jacobians[self.rig_slot_first] = d_first @ jacobian_ab_wrt_a(rig_first, R_first)

        if self.rig_slot_second is not None:
            d_rig_second = d_second @ jacobian_ab_wrt_a(rig_second, R_second)
            if self.rig_slot_second == self.rig_slot_first:
                # same sub-pose on both sides: product rule over both appearances
                jacobians[self.rig_slot_second] = jacobians[self.rig_slot_second] + d_rig_second
            else:
                jacobians[self.rig_slot_second] = d_rig_second

        return jacobians


class ReprojectionCost(PanoramaCostFunction):
    """
    2D residual of a pairwise correspondence: the pixel observed in view i
    is lifted to the unit sphere, rotated into view j and projected, then
    compared to the pixel observed in view j.
    """

    model_type: Optional[IntrinsicType] = None

    def __init__(
        self,
        observation_first: Sequence[float],
        observation_second: Sequence[float],
        model: ScaleOffsetModel,
        rig_configuration: RigConfiguration = RigConfiguration.NO_RIG,
    ):
        if self.model_type is not None and model.type != self.model_type:
            raise TypeError(f"{type(self).__name__} requires a {self.model_type.value} camera model")
        super().__init__(2, rig_configuration, intrinsic_size=model.params_size)
        self.observation_first = np.asarray(observation_first, dtype=np.float64)
        self.observation_second = np.asarray(observation_second, dtype=np.float64)
        self.model = model

    def evaluate(self, parameters, compute_jacobians=False):
        model = self.model
        params = np.asarray(parameters[self.intrinsic_slot], dtype=np.float64)
        R_first, R_second, rig_first, rig_second = self._orientations(parameters)

        first_R_o = rig_first @ R_first
        second_R_o = rig_second @ R_second
        R = second_R_o @ first_R_o.T

        pt_cam = model.ima2cam(params, self.observation_first)
        pt_undist = model.remove_distortion(params, pt_cam)
        ray = model.to_unit_sphere(pt_undist)

        residuals = model.project(params, R, ray) - self.observation_second
        if not compute_jacobians:
            return residuals, None

        d_R = model.d_project_d_rotation(params, R, ray)
        d_first = d_R @ jacobian_ab_wrt_b(second_R_o, first_R_o.T) @ TRANSPOSE_JACOBIAN
        d_second = d_R @ jacobian_ab_wrt_a(second_R_o, first_R_o.T)
        jacobians = self._spread_rotation_jacobians(d_first, d_second, R_first, R_second, rig_first, rig_second)

        distortion_params = model.distortion_params(params)
        d_ray = model.d_project_d_point(params, R, ray) @ model.d_to_unit_sphere_d_point(pt_undist)
        d_pt_cam = d_ray @ model.distortion.d_remove_d_point(distortion_params, pt_cam)

        J = np.zeros((2, model.params_size))
        J[:, 0:2] = model.d_project_d_scale(params, R, ray) + d_pt_cam @ model.d_ima2cam_d_scale(params, self.observation_first)
        J[:, 2:4] = model.d_project_d_principal_point(params, R, ray) + d_pt_cam @ model.d_ima2cam_d_principal_point(params)
        if model.distortion.size:
            J[:, 4:] = model.d_project_d_distortion(params, R, ray) + d_ray @ model.distortion.d_remove_d_params(
                distortion_params, pt_cam
            )
        jacobians[self.intrinsic_slot] = J

        return residuals, jacobians


class PinholeReprojectionCost(ReprojectionCost):
    model_type = IntrinsicType.PINHOLE


class EquidistantReprojectionCost(ReprojectionCost):
    model_type = IntrinsicType.EQUIDISTANT


REPROJECTION_COSTS = {
    IntrinsicType.PINHOLE: PinholeReprojectionCost,
    IntrinsicType.EQUIDISTANT: EquidistantReprojectionCost,
}


class RotationPriorCost(PanoramaCostFunction):
    """
    3D residual log((R_two * R_one^T) * second_R_first^T) between the
    effective orientations of two views.
    """

    def __init__(self, second_R_first: np.ndarray, rig_configuration: RigConfiguration = RigConfiguration.NO_RIG):
        super().__init__(3, rig_configuration)
        self.second_R_first = np.asarray(second_R_first, dtype=np.float64).reshape(3, 3)

    def evaluate(self, parameters, compute_jacobians=False):
        R_first, R_second, rig_first, rig_second = self._orientations(parameters)

        first_R_o = rig_first @ R_first
        second_R_o = rig_second @ R_second
        estimated = second_R_o @ first_R_o.T
        error = estimated @ self.second_R_first.T

        residuals = logm(error)
        if not compute_jacobians:
            return residuals, None

        d_estimated = dlogm_dr(error) @ jacobian_ab_wrt_a(estimated, self.second_R_first.T)
        d_first = d_estimated @ jacobian_ab_wrt_b(second_R_o, first_R_o.T) @ TRANSPOSE_JACOBIAN
        d_second = d_estimated @ jacobian_ab_wrt_a(second_R_o, first_R_o.T)

        return residuals, self._spread_rotation_jacobians(
            d_first, d_second, R_first, R_second, rig_first, rig_second
        )
