"""
Camera projection models used by the panoramic residuals

Parameter layout shared by every model: [fx, fy, ox, oy, distortion...].
The principal point is stored as an offset (ox, oy) from the image centre.

The models are stateless apart from image size and distortion type; every
method receives the parameter vector explicitly so residual evaluation stays
reentrant.
"""

import numpy as np
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from .distortion import DistortionModel, RadialK3, make_distortion
from ..exceptions import UnsupportedCameraModelError


class IntrinsicType(str, Enum):
    """Camera model variants known to the camera network"""

    PINHOLE = "pinhole"
    EQUIDISTANT = "equidistant"
    # stored by the camera network, no panoramic residual for it
    EQUIRECTANGULAR = "equirectangular"


@dataclass
class Intrinsic:
    """
    Camera intrinsic parameters as owned by the camera network

    Attributes:
        type: camera model variant
        width, height: sensor size in pixels
        params: [fx, fy, ox, oy, distortion...]
        distortion: distortion model name (fixed to radialk3 for equidistant)
        initial_scale: initial focal guess (fx, fy), non-positive if unknown
        locked: user-pinned, never refined
        ratio_locked: keep fy / fx constant while refining the focal length
    """

    type: IntrinsicType
    width: int
    height: int
    params: np.ndarray
    distortion: str = "none"
    initial_scale: np.ndarray = field(default_factory=lambda: np.array([-1.0, -1.0]))
    locked: bool = False
    ratio_locked: bool = True

    def __post_init__(self):
        self.type = IntrinsicType(self.type)
        self.params = np.asarray(self.params, dtype=np.float64).copy()
        self.initial_scale = np.asarray(self.initial_scale, dtype=np.float64)
        if self.type == IntrinsicType.EQUIDISTANT:
            self.distortion = RadialK3.name
        expected = 4 + make_distortion(self.distortion).size
        if self.params.size != expected:
            raise ValueError(
                f"{self.type.value} intrinsic with '{self.distortion}' distortion expects "
                f"{expected} parameters, got {self.params.size}"
            )

    @property
    def distortion_size(self) -> int:
        return self.params.size - 4

    def get_params(self) -> np.ndarray:
        return self.params.copy()

    def has_initial_scale(self) -> bool:
        return bool(self.initial_scale[0] > 0 and self.initial_scale[1] > 0)

    def update_from_params(self, params: np.ndarray):
        params = np.asarray(params, dtype=np.float64)
        if params.size != self.params.size:
            raise ValueError(
                f"Cannot update intrinsic from {params.size} parameters, expected {self.params.size}"
            )
        self.params = params.copy()


class ScaleOffsetModel:
    """Common pixel <-> normalised coordinates mapping"""

    def __init__(self, width: int, height: int, distortion: DistortionModel):
        self.width = width
        self.height = height
        self.distortion = distortion
        self.center = np.array([0.5 * width, 0.5 * height])

    @property
    def params_size(self) -> int:
        return 4 + self.distortion.size

    @staticmethod
    def scale(params):
        return params[0:2]

    @staticmethod
    def offset(params):
        return params[2:4]

    @staticmethod
    def distortion_params(params):
        return params[4:]

    def cam2ima(self, params, p):
        return self.scale(params) * p + self.offset(params) + self.center

    def ima2cam(self, params, pt):
        return (np.asarray(pt, dtype=np.float64) - self.offset(params) - self.center) / self.scale(params)

    def d_ima2cam_d_scale(self, params, pt):
        return np.diag(-self.ima2cam(params, pt) / self.scale(params))

    def d_ima2cam_d_principal_point(self, params):
        return np.diag(-1.0 / self.scale(params))

    def remove_distortion(self, params, p):
        return self.distortion.remove(self.distortion_params(params), p)

    def add_distortion(self, params, p):
        return self.distortion.add(self.distortion_params(params), p)

    # Model specific: normalised point <-> unit sphere

    def to_unit_sphere(self, p) -> np.ndarray:
        raise NotImplementedError

    def d_to_unit_sphere_d_point(self, p) -> np.ndarray:
        raise NotImplementedError

    def _cam_project(self, X) -> np.ndarray:
        raise NotImplementedError

    def _d_cam_project_d_point(self, X) -> np.ndarray:
        raise NotImplementedError

    # Projection and its partials

    def project(self, params, R, X, apply_distortion: bool = True) -> np.ndarray:
        """Pixel of the direction X seen through a rotation-only pose R"""
        p = self._cam_project(R @ X)
        if apply_distortion:
            p = self.add_distortion(params, p)
        return self.cam2ima(params, p)

    def unproject(self, params, pt) -> np.ndarray:
        """Unit-sphere ray of a pixel"""
        return self.to_unit_sphere(self.remove_distortion(params, self.ima2cam(params, pt)))

    def d_project_d_point(self, params, R, X) -> np.ndarray:
        """(2, 3) derivative w.r.t. the direction X"""
        return self._d_project_d_cam_point(params, R @ X) @ R

    def d_project_d_rotation(self, params, R, X) -> np.ndarray:
        """(2, 9) derivative w.r.t. the row-major entries of R"""
        return self._d_project_d_cam_point(params, R @ X) @ np.kron(np.eye(3), np.reshape(X, (1, 3)))

    def d_project_d_scale(self, params, R, X) -> np.ndarray:
        p = self.add_distortion(params, self._cam_project(R @ X))
        return np.diag(p)

    def d_project_d_principal_point(self, params, R, X) -> np.ndarray:
        return np.eye(2)

    def d_project_d_distortion(self, params, R, X) -> np.ndarray:
        p = self._cam_project(R @ X)
        return np.diag(self.scale(params)) @ self.distortion.d_add_d_params(
            self.distortion_params(params), p
        )

    def _d_project_d_cam_point(self, params, Xc) -> np.ndarray:
        p = self._cam_project(Xc)
        d_disto = self.distortion.d_add_d_point(self.distortion_params(params), p)
        return np.diag(self.scale(params)) @ d_disto @ self._d_cam_project_d_point(Xc)


class PinholeModel(ScaleOffsetModel):
    """Central perspective projection"""

    type = IntrinsicType.PINHOLE

    def to_unit_sphere(self, p):
        v = np.array([p[0], p[1], 1.0])
        return v / np.linalg.norm(v)

    def d_to_unit_sphere_d_point(self, p):
        v = np.array([p[0], p[1], 1.0])
        n = np.linalg.norm(v)
        d_normalize = (np.eye(3) - np.outer(v, v) / (n * n)) / n
        return d_normalize[:, :2]

    def _cam_project(self, X):
        return X[:2] / X[2]

    def _d_cam_project_d_point(self, X):
        x, y, z = X
        return np.array([
            [1.0 / z, 0.0, -x / (z * z)],
            [0.0, 1.0 / z, -y / (z * z)],
        ])


class EquidistantModel(ScaleOffsetModel):
    """
    Fisheye projection where the normalised radius equals the angle to the
    optical axis
    """

    type = IntrinsicType.EQUIDISTANT

    def to_unit_sphere(self, p):
        theta = np.linalg.norm(p)
        return np.array([*(self._sinc(theta) * p), np.cos(theta)])

    def d_to_unit_sphere_d_point(self, p):
        p = np.asarray(p, dtype=np.float64)
        theta = np.linalg.norm(p)
        s = self._sinc(theta)
        if theta < 1e-4:
            g = -1.0 / 3.0 + theta ** 2 / 30.0
        else:
            g = (theta * np.cos(theta) - np.sin(theta)) / theta ** 3
        J = np.zeros((3, 2))
        J[:2, :] = s * np.eye(2) + g * np.outer(p, p)
        J[2, :] = -s * p
        return J

    @staticmethod
    def _sinc(theta):
        if theta < 1e-4:
            return 1.0 - theta ** 2 / 6.0
        return np.sin(theta) / theta

    def _cam_project(self, X):
        x, y, z = X
        rho = np.hypot(x, y)
        if rho < 1e-12:
            return np.array([x, y]) / z
        return np.arctan2(rho, z) / rho * np.array([x, y])

    def _d_cam_project_d_point(self, X):
        x, y, z = X
        u = np.array([x, y])
        rho2 = x * x + y * y
        rho = np.sqrt(rho2)
        denom = rho2 + z * z
        if rho < 1e-6 * abs(z):
            t = 1.0 / z
            dt_over_rho = -2.0 / (3.0 * z ** 3)
        else:
            theta = np.arctan2(rho, z)
            t = theta / rho
            dtheta_drho = z / denom
            dt_over_rho = (rho * dtheta_drho - theta) / rho ** 3
        J = np.zeros((2, 3))
        J[:, :2] = t * np.eye(2) + dt_over_rho * np.outer(u, u)
        J[:, 2] = -u / denom
        return J


CAMERA_MODELS = {
    IntrinsicType.PINHOLE: PinholeModel,
    IntrinsicType.EQUIDISTANT: EquidistantModel,
}


def make_camera_model(intrinsic: Intrinsic, intrinsic_id: Optional[int] = None) -> ScaleOffsetModel:
    """Projection model of an intrinsic; raises for variants without one"""
    model_cls = CAMERA_MODELS.get(intrinsic.type)
    if model_cls is None:
        raise UnsupportedCameraModelError(intrinsic_id, intrinsic.type.value)
    return model_cls(intrinsic.width, intrinsic.height, make_distortion(intrinsic.distortion))
