"""
SO(3) helpers and matrix-calculus building blocks

All 3x3 matrices are vectorised row-major (index = 3 * row + col), which is
the layout of the 9-wide rotation parameter blocks.
"""

import numpy as np
from scipy.spatial.transform import Rotation

SMALL_ANGLE = 1e-4


def skew(w: np.ndarray) -> np.ndarray:
    """Skew-symmetric matrix such that skew(w) @ v == cross(w, v)"""
    return np.array([
        [0.0, -w[2], w[1]],
        [w[2], 0.0, -w[0]],
        [-w[1], w[0], 0.0],
    ])


def expm(w: np.ndarray) -> np.ndarray:
    """Rotation matrix exp(skew(w))"""
    return Rotation.from_rotvec(np.asarray(w, dtype=np.float64)).as_matrix()


def logm(R: np.ndarray) -> np.ndarray:
    """Axis-angle vector w such that exp(skew(w)) == R"""
    return Rotation.from_matrix(np.asarray(R, dtype=np.float64)).as_rotvec()


def dlogm_dr(R: np.ndarray) -> np.ndarray:
    """
    Derivative of logm(R) w.r.t. the 9 row-major entries of R.

    Uses w = theta / (2 sin(theta)) * vee(R - R^T), theta = acos((tr(R) - 1) / 2).

    Returns:
        (3, 9) Jacobian
    """
    R = np.asarray(R, dtype=np.float64)
    c = np.clip(0.5 * (np.trace(R) - 1.0), -1.0, 1.0)
    theta = np.arccos(c)

    v = np.array([R[2, 1] - R[1, 2], R[0, 2] - R[2, 0], R[1, 0] - R[0, 1]])

    dv = np.zeros((3, 9))
    dv[0, 7], dv[0, 5] = 1.0, -1.0
    dv[1, 2], dv[1, 6] = 1.0, -1.0
    dv[2, 3], dv[2, 1] = 1.0, -1.0

    dc = np.zeros(9)
    dc[[0, 4, 8]] = 0.5

    if theta < SMALL_ANGLE:
        f = 0.5 + theta ** 2 / 12.0
        df_dc = -1.0 / 6.0 - theta ** 2 / 15.0
    else:
        s = np.sin(theta)
        f = theta / (2.0 * s)
        df_dc = (theta * np.cos(theta) - s) / (2.0 * s ** 3)

    return f * dv + np.outer(v, df_dc * dc)


def left_jacobian(w: np.ndarray) -> np.ndarray:
    """
    Left Jacobian of SO(3): exp(skew(w + e)) ~= exp(skew(J_l(w) e)) exp(skew(w))
    """
    theta = np.linalg.norm(w)
    W = skew(w)
    if theta < 1e-8:
        return np.eye(3) + 0.5 * W
    return (
        np.eye(3)
        + (1.0 - np.cos(theta)) / theta ** 2 * W
        + (theta - np.sin(theta)) / theta ** 3 * (W @ W)
    )


def jacobian_ab_wrt_a(A: np.ndarray, B: np.ndarray) -> np.ndarray:
    """d vec(A @ B) / d vec(A), shape (m*p, m*n)"""
    m = A.shape[0]
    return np.kron(np.eye(m), B.T)


def jacobian_ab_wrt_b(A: np.ndarray, B: np.ndarray) -> np.ndarray:
    """d vec(A @ B) / d vec(B), shape (m*p, n*p)"""
    p = B.shape[1]
    return np.kron(A, np.eye(p))


def jacobian_at_wrt_a(m: int = 3, n: int = 3) -> np.ndarray:
    """d vec(A^T) / d vec(A) for an (m, n) matrix A"""
    J = np.zeros((m * n, m * n))
    for i in range(n):
        for j in range(m):
            J[i * m + j, j * n + i] = 1.0
    return J


def is_rotation(R: np.ndarray, tol: float = 1e-9) -> bool:
    """Check orthonormality and positive determinant"""
    R = np.asarray(R, dtype=np.float64)
    if R.shape != (3, 3):
        return False
    return bool(
        np.linalg.norm(R.T @ R - np.eye(3)) < tol and np.linalg.det(R) > 0.0
    )
