"""
Unit tests for rotation and intrinsics manifolds
"""

import pytest
import numpy as np
from pathlib import Path
import sys

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from panoba.core.so3 import expm, is_rotation
from panoba.core.solver.manifolds import EuclideanManifold, IntrinsicsManifold, SO3Manifold
from conftest import numeric_jacobian


class TestSO3Manifold:
    """Test the exponential-map rotation parameterization"""

    def test_sizes(self):
        manifold = SO3Manifold()
        assert manifold.ambient_size == 9
        assert manifold.tangent_size == 3

    def test_repeated_updates_stay_orthonormal(self):
        manifold = SO3Manifold()
        rng = np.random.default_rng(0)
        x = expm(np.array([0.3, 0.1, -0.2])).reshape(9)

        for _ in range(1000):
            x = manifold.plus(x, rng.normal(scale=0.1, size=3))

        R = x.reshape(3, 3)
        assert np.linalg.norm(R.T @ R - np.eye(3)) < 1e-12
        assert is_rotation(R, tol=1e-12)

    def test_zero_update_is_identity(self):
        manifold = SO3Manifold()
        x = expm(np.array([0.5, -0.7, 0.2])).reshape(9)
        np.testing.assert_allclose(manifold.plus(x, np.zeros(3)), x)

    def test_plus_jacobian(self):
        manifold = SO3Manifold()
        x = expm(np.array([0.5, -0.7, 0.2])).reshape(9)

        numeric = numeric_jacobian(lambda d: manifold.plus(x, d), np.zeros(3))
        np.testing.assert_allclose(manifold.plus_jacobian(x), numeric, atol=1e-8)

    def test_plus_jacobian_away_from_origin(self):
        manifold = SO3Manifold()
        x = expm(np.array([0.5, -0.7, 0.2])).reshape(9)
        delta = np.array([0.3, 0.2, -0.4])

        numeric = numeric_jacobian(lambda d: manifold.plus(x, d), delta)
        np.testing.assert_allclose(manifold.plus_jacobian_at(x, delta), numeric, atol=1e-8)


class TestIntrinsicsManifold:
    """Test the selective-lock intrinsics parameterization"""

    @pytest.mark.parametrize("flags, expected", [
        (dict(), 9),
        (dict(lock_focal_ratio=True), 8),
        (dict(lock_focal=True), 7),
        (dict(lock_focal=True, lock_focal_ratio=True), 7),
        (dict(lock_center=True), 7),
        (dict(lock_distortion=True), 4),
        (dict(lock_focal=True, lock_center=True, lock_distortion=True), 0),
    ])
    def test_tangent_size(self, flags, expected):
        manifold = IntrinsicsManifold(params_size=9, **flags)
        assert manifold.tangent_size == expected
        assert manifold.ambient_size == 9

    def test_update_order(self):
        """Free groups consume the tangent in the order focal, center, distortion"""
        manifold = IntrinsicsManifold(params_size=7)
        x = np.array([800.0, 810.0, 1.0, 2.0, 0.1, 0.2, 0.3])
        delta = np.arange(1.0, 8.0)
        np.testing.assert_allclose(manifold.plus(x, delta), x + delta)

    def test_locked_groups_are_skipped(self):
        manifold = IntrinsicsManifold(params_size=7, lock_focal=True, lock_distortion=True)
        x = np.array([800.0, 810.0, 1.0, 2.0, 0.1, 0.2, 0.3])
        result = manifold.plus(x, np.array([0.5, -0.5]))
        np.testing.assert_allclose(result, [800.0, 810.0, 1.5, 1.5, 0.1, 0.2, 0.3])

    def test_focal_ratio_coupling(self):
        manifold = IntrinsicsManifold(params_size=4, focal_ratio=1.25, lock_focal_ratio=True, lock_center=True)
        x = np.array([800.0, 1000.0, 0.0, 0.0])

        result = manifold.plus(x, np.array([4.0]))
        np.testing.assert_allclose(result, [804.0, 1005.0, 0.0, 0.0])

        J = manifold.plus_jacobian(x)
        assert J.shape == (4, 1)
        np.testing.assert_allclose(J[:, 0], [1.0, 1.25, 0.0, 0.0])

    def test_plus_jacobian_matches_update(self):
        manifold = IntrinsicsManifold(params_size=9, focal_ratio=0.9, lock_focal_ratio=True)
        x = np.linspace(1.0, 9.0, 9)
        numeric = numeric_jacobian(lambda d: manifold.plus(x, d), np.zeros(manifold.tangent_size))
        np.testing.assert_allclose(manifold.plus_jacobian(x), numeric, atol=1e-8)

    def test_is_immutable(self):
        manifold = IntrinsicsManifold(params_size=4)
        with pytest.raises(AttributeError):
            manifold.lock_focal = True


class TestEuclideanManifold:

    def test_identity(self):
        manifold = EuclideanManifold(3)
        np.testing.assert_allclose(manifold.plus(np.ones(3), np.arange(3.0)), [1.0, 2.0, 3.0])
        np.testing.assert_allclose(manifold.plus_jacobian(np.ones(3)), np.eye(3))
