"""
Panoramic (rotation-only) Bundle Adjustment

Refines camera orientations, rig sub-pose offsets and intrinsics from
pairwise 2D correspondences and relative rotation priors:

    minimize  Σ ρ(||r_ij(R_i, R_j, K)||²) + Σ ||log(R_j R_i^T R_ij^T)||²

where each correspondence contributes two reprojection residuals (i -> j
and its mirror j -> i) under a Huber loss, and rotation priors contribute
one unweighted 3D residual.

Problem construction runs four ordered passes over a fresh problem:
extrinsics, intrinsics, 2D constraints, rotation priors. Parameter blocks
are copies of the camera network values; the network is only modified by
`update_from_solution` after a usable solve.
"""

import numpy as np
import logging
from collections import Counter
from dataclasses import dataclass, field
from enum import IntFlag
from typing import Dict, Mapping, Optional

from ..camera.models import ScaleOffsetModel, make_camera_model
from ..exceptions import ConfigurationError, InvariantViolationError
from ..sfm_data import RigSubPoseStatus, SfMData, View
from ..solver import (
    IntrinsicsManifold,
    LinearSolverType,
    Problem,
    SO3Manifold,
    SPARSE_LIBRARY_PREFERENCE,
    SolverOptions,
    SolverSummary,
    is_sparse_linear_algebra_library_available,
    make_loss,
    solve,
)
from .config import BundleAdjustmentPanoramaConfig
from .cost_functions import REPROJECTION_COSTS, RigConfiguration, RotationPriorCost
from .statistics import EParameter, ParameterState, Statistics

logger = logging.getLogger(__name__)


class RefineOptions(IntFlag):
    """What the caller asks to refine (translation and structure are ignored)"""

    NONE = 0
    ROTATION = 1
    TRANSLATION = 2
    FOCAL = 4
    DISTORTION = 8
    OPTICAL_OFFSET_ALWAYS = 16
    OPTICAL_OFFSET_IF_ENOUGH_DATA = 32
    STRUCTURE = 64

    @property
    def refine_poses(self) -> bool:
        return bool(self & (RefineOptions.ROTATION | RefineOptions.TRANSLATION))

    @property
    def refine_optical_center(self) -> bool:
        return bool(self & (RefineOptions.OPTICAL_OFFSET_ALWAYS | RefineOptions.OPTICAL_OFFSET_IF_ENOUGH_DATA))

    @property
    def refine_intrinsics(self) -> bool:
        return bool(self & (RefineOptions.FOCAL | RefineOptions.DISTORTION)) or self.refine_optical_center


@dataclass
class ProblemContext:
    """Parameter blocks and effective states of one optimization run"""

    pose_blocks: Dict[int, np.ndarray] = field(default_factory=dict)
    rig_blocks: Dict[int, Dict[int, np.ndarray]] = field(default_factory=dict)
    intrinsic_blocks: Dict[int, np.ndarray] = field(default_factory=dict)
    pose_states: Dict[int, ParameterState] = field(default_factory=dict)
    intrinsic_states: Dict[int, ParameterState] = field(default_factory=dict)
    camera_models: Dict[int, ScaleOffsetModel] = field(default_factory=dict)


class BundleAdjustmentPanorama:
    """
    Rotation-only Bundle Adjustment for panoramic camera networks

    Per-entity states (REFINED / CONSTANT / IGNORED) come from the caller's
    optimization strategy; entities missing from the state maps are REFINED.
    Locked poses and intrinsics are always kept constant.
    """

    def __init__(self, config: Optional[BundleAdjustmentPanoramaConfig] = None):
        """
        Args:
            config: BundleAdjustmentPanoramaConfig or None (uses defaults)
        """
        self.config = config or BundleAdjustmentPanoramaConfig()
        self.logger = logging.getLogger(__name__)
        self.logger.setLevel(getattr(logging, self.config.log_level))

        self._pose_states: Dict[int, ParameterState] = {}
        self._intrinsic_states: Dict[int, ParameterState] = {}
        self._camera_distances: Dict[int, int] = {}

        self.context = ProblemContext()
        self.statistics = Statistics()

    # Strategy input

    def set_pose_states(self, states: Mapping[int, ParameterState]):
        self._pose_states = dict(states)

    def set_intrinsic_states(self, states: Mapping[int, ParameterState]):
        self._intrinsic_states = dict(states)

    def set_camera_distances(self, distances: Mapping[int, int]):
        """Graph distance per pose id, -1 when not connected (statistics only)"""
        self._camera_distances = dict(distances)

    def get_pose_state(self, pose_id: int) -> ParameterState:
        return self._pose_states.get(pose_id, ParameterState.REFINED)

    def get_intrinsic_state(self, intrinsic_id: int) -> ParameterState:
        return self._intrinsic_states.get(intrinsic_id, ParameterState.REFINED)

    def get_statistics(self) -> Statistics:
        return self.statistics

    # Problem construction

    def reset_problem(self):
        """Drop every per-run block and counter"""
        self.context = ProblemContext()
        self.statistics = Statistics()
        for distance in self._camera_distances.values():
            self.statistics.add_camera_distance(distance)

    def add_extrinsics_to_problem(self, sfm_data: SfMData, refine_options: RefineOptions, problem: Problem):
        refine_rotation = bool(refine_options & RefineOptions.ROTATION)

        def add_rotation_block(rotation: np.ndarray, is_constant: bool) -> np.ndarray:
            block = np.array(rotation, dtype=np.float64).reshape(9)
            problem.add_parameter_block(block, SO3Manifold())
            if is_constant:
                problem.set_parameter_block_constant(block)
            return block

        for pose_id, pose in sfm_data.poses.items():
            state = self.get_pose_state(pose_id)
            if state == ParameterState.IGNORED:
                self.context.pose_states[pose_id] = ParameterState.IGNORED
                self.statistics.add_state(EParameter.POSE, ParameterState.IGNORED)
                continue

            is_constant = pose.locked or state == ParameterState.CONSTANT or not refine_rotation
            effective = ParameterState.CONSTANT if is_constant else ParameterState.REFINED
            self.context.pose_blocks[pose_id] = add_rotation_block(pose.rotation, is_constant)
            self.context.pose_states[pose_id] = effective
            self.statistics.add_state(EParameter.POSE, effective)

        # rig offsets follow their own status only
        for rig_id, rig in sfm_data.rigs.items():
            for sub_pose_id, sub_pose in enumerate(rig.sub_poses):
                if sub_pose.status == RigSubPoseStatus.UNINITIALIZED:
                    continue
                is_constant = sub_pose.status == RigSubPoseStatus.CONSTANT
                self.context.rig_blocks.setdefault(rig_id, {})[sub_pose_id] = add_rotation_block(
                    sub_pose.rotation, is_constant
                )

    def add_intrinsics_to_problem(self, sfm_data: SfMData, refine_options: RefineOptions, problem: Problem):
        refine_focal = bool(refine_options & RefineOptions.FOCAL)
        refine_distortion = bool(refine_options & RefineOptions.DISTORTION)
        config = self.config

        usage = Counter()
        for view in sfm_data.views.values():
            if sfm_data.is_pose_and_intrinsic_defined(view):
                usage[view.intrinsic_id] += 1

        for intrinsic_id, intrinsic in sfm_data.intrinsics.items():
            usage_count = usage[intrinsic_id]

            # not used by any reconstructed view
            if usage_count <= 0 or self.get_intrinsic_state(intrinsic_id) == ParameterState.IGNORED:
                self.context.intrinsic_states[intrinsic_id] = ParameterState.IGNORED
                self.statistics.add_state(EParameter.INTRINSIC, ParameterState.IGNORED)
                continue

            block = intrinsic.get_params()
            problem.add_parameter_block(block)
            self.context.intrinsic_blocks[intrinsic_id] = block

            if (
                intrinsic.locked
                or not refine_options.refine_intrinsics
                or self.get_intrinsic_state(intrinsic_id) == ParameterState.CONSTANT
            ):
                problem.set_parameter_block_constant(block)
                self.context.intrinsic_states[intrinsic_id] = ParameterState.CONSTANT
                self.statistics.add_state(EParameter.INTRINSIC, ParameterState.CONSTANT)
                continue

            lock_focal = False
            lock_ratio = True
            focal_ratio = 1.0

            if refine_focal:
                if intrinsic.has_initial_scale():
                    # only a margin around the initial guess
                    max_focal_error = int(config.focal_margin_ratio * max(intrinsic.width, intrinsic.height))
                    for index in (0, 1):
                        guess = float(intrinsic.initial_scale[index])
                        problem.set_parameter_lower_bound(block, index, guess - max_focal_error)
                        problem.set_parameter_upper_bound(block, index, guess + max_focal_error)
                else:
                    # converging lens: positive focal length
                    problem.set_parameter_lower_bound(block, 0, 0.0)
                    problem.set_parameter_lower_bound(block, 1, 0.0)

                focal_ratio = block[1] / block[0]
                lock_ratio = intrinsic.ratio_locked
            else:
                lock_focal = True

            enough_data = usage_count > config.min_nb_images_to_refine_optical_center
            refine_center = bool(refine_options & RefineOptions.OPTICAL_OFFSET_ALWAYS) or (
                bool(refine_options & RefineOptions.OPTICAL_OFFSET_IF_ENOUGH_DATA) and enough_data
            )
            if refine_center:
                margin = config.optical_center_margin_ratio
                problem.set_parameter_lower_bound(block, 2, -margin * intrinsic.width)
                problem.set_parameter_upper_bound(block, 2, margin * intrinsic.width)
                problem.set_parameter_lower_bound(block, 3, -margin * intrinsic.height)
                problem.set_parameter_upper_bound(block, 3, margin * intrinsic.height)

            manifold = IntrinsicsManifold(
                params_size=block.size,
                focal_ratio=focal_ratio,
                lock_focal=lock_focal,
                lock_focal_ratio=lock_ratio,
                lock_center=not refine_center,
                lock_distortion=not refine_distortion,
            )
            problem.set_manifold(block, manifold)

            self.context.intrinsic_states[intrinsic_id] = ParameterState.REFINED
            self.statistics.add_state(EParameter.INTRINSIC, ParameterState.REFINED)

    def _get_view(self, sfm_data: SfMData, view_id: int) -> View:
        try:
            return sfm_data.get_view(view_id)
        except KeyError:
            raise InvariantViolationError(f"View {view_id} is referenced but not part of the camera network") from None

    def _pose_block(self, view: View) -> np.ndarray:
        block = self.context.pose_blocks.get(view.pose_id)
        if block is None:
            state = self.context.pose_states.get(view.pose_id)
            raise InvariantViolationError(
                f"View {view.view_id} references pose {view.pose_id} which has no parameter block "
                f"(state: {state.value if state else 'unknown'})"
            )
        return block

    def _rig_block(self, view: View) -> Optional[np.ndarray]:
        if not view.uses_rig():
            return None
        block = self.context.rig_blocks.get(view.rig_id, {}).get(view.sub_pose_id)
        if block is None:
            raise InvariantViolationError(
                f"View {view.view_id} references rig {view.rig_id} sub-pose {view.sub_pose_id} "
                f"which has no parameter block"
            )
        return block

    def _intrinsic_block(self, view: View) -> np.ndarray:
        block = self.context.intrinsic_blocks.get(view.intrinsic_id)
        if block is None:
            state = self.context.intrinsic_states.get(view.intrinsic_id)
            raise InvariantViolationError(
                f"View {view.view_id} references intrinsic {view.intrinsic_id} which has no parameter block "
                f"(state: {state.value if state else 'unknown'})"
            )
        return block

    def _camera_model(self, sfm_data: SfMData, intrinsic_id: int) -> ScaleOffsetModel:
        model = self.context.camera_models.get(intrinsic_id)
        if model is None:
            model = make_camera_model(sfm_data.intrinsics[intrinsic_id], intrinsic_id)
            self.context.camera_models[intrinsic_id] = model
        return model

    def _endpoint_blocks(self, sfm_data: SfMData, view_id_first: int, view_id_second: int):
        view_first = self._get_view(sfm_data, view_id_first)
        view_second = self._get_view(sfm_data, view_id_second)

        pose_first = self._pose_block(view_first)
        pose_second = self._pose_block(view_second)
        if pose_first is pose_second:
            raise InvariantViolationError(
                f"Views {view_id_first} and {view_id_second} share pose {view_first.pose_id}"
            )
        return view_first, view_second, pose_first, pose_second, self._rig_block(view_first), self._rig_block(view_second)

    def add_constraints_2d_to_problem(self, sfm_data: SfMData, refine_options: RefineOptions, problem: Problem):
        loss_function = make_loss(self.config.loss, self.config.loss_scale)

        for constraint in sfm_data.constraints_2d:
            view_first, view_second, pose_first, pose_second, rig_first, rig_second = self._endpoint_blocks(
                sfm_data, constraint.view_first, constraint.view_second
            )

            intrinsic_block = self._intrinsic_block(view_first)
            if self._intrinsic_block(view_second) is not intrinsic_block:
                raise InvariantViolationError(
                    f"Views {view_first.view_id} and {view_second.view_id} of a 2D constraint "
                    f"do not share the same intrinsic ({view_first.intrinsic_id} != {view_second.intrinsic_id})"
                )

            model = self._camera_model(sfm_data, view_first.intrinsic_id)
            cost_class = REPROJECTION_COSTS[model.type]
            rig_configuration = RigConfiguration.resolve(rig_first, rig_second)

            direct = cost_class(constraint.observation_first, constraint.observation_second, model, rig_configuration)
            problem.add_residual_block(
                direct,
                loss_function,
                rig_configuration.parameter_blocks(pose_first, pose_second, rig_first, rig_second, intrinsic_block),
            )

            mirrored_configuration = rig_configuration.mirrored()
            mirrored = cost_class(
                constraint.observation_second, constraint.observation_first, model, mirrored_configuration
            )
            problem.add_residual_block(
                mirrored,
                loss_function,
                mirrored_configuration.parameter_blocks(pose_second, pose_first, rig_second, rig_first, intrinsic_block),
            )

    def add_rotation_priors_to_problem(self, sfm_data: SfMData, refine_options: RefineOptions, problem: Problem):
        for prior in sfm_data.rotation_priors:
            _, _, pose_first, pose_second, rig_first, rig_second = self._endpoint_blocks(
                sfm_data, prior.view_first, prior.view_second
            )
            rig_configuration = RigConfiguration.resolve(rig_first, rig_second)
            problem.add_residual_block(
                RotationPriorCost(prior.second_R_first, rig_configuration),
                None,
                rig_configuration.parameter_blocks(pose_first, pose_second, rig_first, rig_second),
            )

    def create_problem(self, sfm_data: SfMData, refine_options: RefineOptions, problem: Problem):
        """
        Fill `problem` from the camera network.

        Raises:
            ConfigurationError: a constraint uses a camera model without residual
            InvariantViolationError: a residual references a block never added
        """
        refine_options = RefineOptions(refine_options)
        self.reset_problem()

        self.add_extrinsics_to_problem(sfm_data, refine_options, problem)
        self.add_intrinsics_to_problem(sfm_data, refine_options, problem)
        self.add_constraints_2d_to_problem(sfm_data, refine_options, problem)
        self.add_rotation_priors_to_problem(sfm_data, refine_options, problem)

    # Solving

    def set_solver_options(self) -> SolverOptions:
        solver_config = self.config.solver
        options = SolverOptions(
            linear_solver_type=LinearSolverType.DENSE,
            max_num_iterations=solver_config.max_num_iterations,
            num_threads=1,
            function_tolerance=solver_config.function_tolerance,
            gradient_tolerance=solver_config.gradient_tolerance,
            parameter_tolerance=solver_config.parameter_tolerance,
            minimizer_progress_to_stdout=solver_config.verbose,
        )

        if solver_config.linear_solver == "sparse":
            for library in SPARSE_LIBRARY_PREFERENCE:
                if is_sparse_linear_algebra_library_available(library):
                    options.linear_solver_type = LinearSolverType.SPARSE
                    options.sparse_linear_algebra_library_type = library
                    break
            else:
                self.logger.warning("No sparse linear algebra library available, falling back to dense solver")

        self.logger.debug(
            f"Linear solver: {options.linear_solver_type.value} "
            f"({options.sparse_linear_algebra_library_type.value})"
        )
        return options

    def update_from_solution(self, sfm_data: SfMData, refine_options: RefineOptions):
        """Write refined blocks back into the camera network"""
        refine_options = RefineOptions(refine_options)

        if refine_options.refine_poses:
            for pose_id, block in self.context.pose_blocks.items():
                if self.context.pose_states[pose_id] != ParameterState.REFINED:
                    continue
                sfm_data.poses[pose_id].rotation = block.reshape(3, 3).copy()

        for rig_id, blocks in self.context.rig_blocks.items():
            rig = sfm_data.rigs[rig_id]
            for sub_pose_id, block in blocks.items():
                sub_pose = rig.get_sub_pose(sub_pose_id)
                if sub_pose.status == RigSubPoseStatus.REFINED:
                    sub_pose.rotation = block.reshape(3, 3).copy()

        if refine_options.refine_intrinsics:
            for intrinsic_id, block in self.context.intrinsic_blocks.items():
                if self.context.intrinsic_states[intrinsic_id] != ParameterState.REFINED:
                    continue
                sfm_data.intrinsics[intrinsic_id].update_from_params(block)

    def _fill_statistics(self, summary: SolverSummary):
        stats = self.statistics
        stats.time = summary.total_time_in_seconds
        stats.nb_successful_iterations = summary.num_successful_steps
        stats.nb_unsuccessful_iterations = summary.num_unsuccessful_steps
        stats.nb_residual_blocks = summary.num_residual_blocks
        if summary.num_residuals > 0:
            stats.rmse_initial = float(np.sqrt(summary.initial_cost / summary.num_residuals))
            stats.rmse_final = float(np.sqrt(summary.final_cost / summary.num_residuals))

    def adjust(self, sfm_data: SfMData, refine_options: RefineOptions) -> bool:
        """
        Run the panoramic Bundle Adjustment

        Args:
            sfm_data: camera network, updated in place on success
            refine_options: RefineOptions flags

        Returns:
            True if the solution was usable and written back
        """
        refine_options = RefineOptions(refine_options)
        self.logger.info(f"Starting panoramic Bundle Adjustment ({refine_options!r})...")

        problem = Problem()
        try:
            self.create_problem(sfm_data, refine_options, problem)
        except ConfigurationError as e:
            self.logger.error(f"Unable to build the Bundle Adjustment problem: {e}")
            return False

        self.logger.info(
            f"Problem: {problem.num_parameter_blocks()} parameter blocks, "
            f"{problem.num_residual_blocks()} residual blocks"
        )

        options = self.set_solver_options()
        summary = solve(problem, options)

        if self.config.solver.summary:
            self.logger.info(summary.full_report())

        if not summary.is_solution_usable():
            self.logger.warning("Bundle Adjustment failed, the solution is not usable.")
            return False

        self.update_from_solution(sfm_data, refine_options)
        self._fill_statistics(summary)

        self.logger.info(
            f"Bundle Adjustment done: RMSE {self.statistics.rmse_initial:.6f} -> {self.statistics.rmse_final:.6f}"
        )
        return True
