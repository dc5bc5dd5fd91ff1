"""
Synthetic panoramic camera networks shared by the tests
"""

import pytest
import numpy as np
from pathlib import Path
import sys

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from panoba.core.so3 import expm
from panoba.core.camera import Intrinsic, IntrinsicType, make_camera_model
from panoba.core.sfm_data import CameraPose, Constraint2D, RotationPrior, SfMData, View

WIDTH = 1000
HEIGHT = 800
FOCAL = 800.0

# world to camera rotations of a small panorama (yaw and pitch)
ROTVECS = [
    np.array([0.0, 0.0, 0.0]),
    np.array([0.05, 0.30, 0.0]),
    np.array([-0.04, 0.60, 0.02]),
]


def make_observations(model, params, R_first, R_second, rng, count=30):
    """Pixel pairs of random directions visible in both views"""
    pairs = []
    while len(pairs) < count:
        pixel = rng.uniform([50.0, 50.0], [WIDTH - 50.0, HEIGHT - 50.0])
        X = R_first.T @ model.unproject(params, pixel)
        Xc = R_second @ X
        if Xc[2] <= 0.2:
            continue
        other = model.project(params, R_second, X)
        if not (0.0 <= other[0] < WIDTH and 0.0 <= other[1] < HEIGHT):
            continue
        pairs.append((pixel, other))
    return pairs


def build_panorama(intrinsic_type=IntrinsicType.PINHOLE, distortion="none", distortion_params=(), seed=0):
    """
    Noiseless 3-view panorama sharing one intrinsic, with correspondences
    on the edges (0, 1), (1, 2) and (0, 2).
    """
    rng = np.random.default_rng(seed)
    params = np.array([FOCAL, FOCAL, 3.0, -2.0, *distortion_params], dtype=np.float64)
    intrinsic = Intrinsic(intrinsic_type, WIDTH, HEIGHT, params, distortion=distortion)
    model = make_camera_model(intrinsic)

    sfm_data = SfMData()
    sfm_data.intrinsics[0] = intrinsic
    rotations = [expm(w) for w in ROTVECS]
    for i, R in enumerate(rotations):
        sfm_data.poses[i] = CameraPose(R)
        sfm_data.add_view(View(view_id=10 + i, pose_id=i, intrinsic_id=0))

    for first, second in [(0, 1), (1, 2), (0, 2)]:
        for obs_first, obs_second in make_observations(model, params, rotations[first], rotations[second], rng):
            sfm_data.constraints_2d.append(Constraint2D(10 + first, obs_first, 10 + second, obs_second))

    return sfm_data, rotations


def perturb_poses(sfm_data, pose_ids, angle=0.01, seed=1):
    rng = np.random.default_rng(seed)
    for pose_id in pose_ids:
        axis = rng.normal(size=3)
        axis /= np.linalg.norm(axis)
        pose = sfm_data.poses[pose_id]
        pose.rotation = expm(angle * axis) @ pose.rotation


def add_rotation_priors(sfm_data, rotations):
    for first, second in [(0, 1), (1, 2)]:
        sfm_data.rotation_priors.append(
            RotationPrior(10 + first, 10 + second, rotations[second] @ rotations[first].T)
        )


@pytest.fixture
def panorama():
    """(sfm_data, ground truth rotations) of a pinhole panorama"""
    return build_panorama()


@pytest.fixture
def equidistant_panorama():
    return build_panorama(IntrinsicType.EQUIDISTANT, distortion_params=(0.01, -0.002, 0.0005))


def numeric_jacobian(f, x, eps=1e-6):
    """Central differences of f around x"""
    x = np.asarray(x, dtype=np.float64)
    f0 = np.asarray(f(x))
    J = np.zeros((f0.size, x.size))
    for k in range(x.size):
        step = np.zeros_like(x)
        step[k] = eps
        J[:, k] = (np.asarray(f(x + step)) - np.asarray(f(x - step))) / (2.0 * eps)
    return J
