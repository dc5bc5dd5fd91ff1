"""
In-memory camera network consumed by the panoramic bundle adjustment

Holds poses, rigs, intrinsics, views, pairwise 2D constraints and relative
rotation priors. Only rotations are modelled.
"""

import numpy as np
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional

from .camera.models import Intrinsic


class RigSubPoseStatus(Enum):
    UNINITIALIZED = 0
    CONSTANT = 1
    REFINED = 2


@dataclass
class CameraPose:
    """Absolute orientation of a camera (world to camera rotation)"""

    rotation: np.ndarray
    locked: bool = False

    def __post_init__(self):
        self.rotation = np.asarray(self.rotation, dtype=np.float64).reshape(3, 3).copy()


@dataclass
class RigSubPose:
    """Rotation from the rig base to one physical camera of the rig"""

    rotation: np.ndarray = field(default_factory=lambda: np.eye(3))
    status: RigSubPoseStatus = RigSubPoseStatus.UNINITIALIZED

    def __post_init__(self):
        self.rotation = np.asarray(self.rotation, dtype=np.float64).reshape(3, 3).copy()


@dataclass
class Rig:
    sub_poses: List[RigSubPose] = field(default_factory=list)

    @property
    def nb_sub_poses(self) -> int:
        return len(self.sub_poses)

    def get_sub_pose(self, sub_pose_id: int) -> RigSubPose:
        return self.sub_poses[sub_pose_id]


@dataclass
class View:
    """
    One image of the network.

    A view belonging to a rig gets its orientation from rig sub-pose x base
    pose, unless `independent_pose` is set.
    """

    view_id: int
    pose_id: int
    intrinsic_id: int
    rig_id: Optional[int] = None
    sub_pose_id: Optional[int] = None
    independent_pose: bool = False

    def is_part_of_rig(self) -> bool:
        return self.rig_id is not None and self.sub_pose_id is not None

    def uses_rig(self) -> bool:
        return self.is_part_of_rig() and not self.independent_pose


@dataclass
class Constraint2D:
    """Same direction observed at `observation_first` and `observation_second`"""

    view_first: int
    observation_first: np.ndarray
    view_second: int
    observation_second: np.ndarray

    def __post_init__(self):
        self.observation_first = np.asarray(self.observation_first, dtype=np.float64)
        self.observation_second = np.asarray(self.observation_second, dtype=np.float64)


@dataclass
class RotationPrior:
    """Measured rotation of the second base pose relative to the first"""

    view_first: int
    view_second: int
    second_R_first: np.ndarray

    def __post_init__(self):
        self.second_R_first = np.asarray(self.second_R_first, dtype=np.float64).reshape(3, 3)


@dataclass
class SfMData:
    views: Dict[int, View] = field(default_factory=dict)
    poses: Dict[int, CameraPose] = field(default_factory=dict)
    rigs: Dict[int, Rig] = field(default_factory=dict)
    intrinsics: Dict[int, Intrinsic] = field(default_factory=dict)
    constraints_2d: List[Constraint2D] = field(default_factory=list)
    rotation_priors: List[RotationPrior] = field(default_factory=list)

    def add_view(self, view: View) -> View:
        self.views[view.view_id] = view
        return view

    def get_view(self, view_id: int) -> View:
        return self.views[view_id]

    def get_rig_sub_pose(self, view: View) -> RigSubPose:
        return self.rigs[view.rig_id].get_sub_pose(view.sub_pose_id)

    def is_pose_and_intrinsic_defined(self, view: View) -> bool:
        """True if the view is reconstructed: pose, intrinsic and sub-pose all known"""
        if view.intrinsic_id not in self.intrinsics or view.pose_id not in self.poses:
            return False
        if view.uses_rig():
            rig = self.rigs.get(view.rig_id)
            if rig is None or view.sub_pose_id >= rig.nb_sub_poses:
                return False
            return rig.get_sub_pose(view.sub_pose_id).status != RigSubPoseStatus.UNINITIALIZED
        return True
