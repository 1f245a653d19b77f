import math

import numpy as np
import pytest

from mocap_retarget.core.math3d import (
    X_AXIS,
    Y_AXIS,
    Z_AXIS,
    normalize,
    quat_angle,
    quat_from_axis_angle,
    quat_from_basis,
    quat_from_unit_vectors,
    quat_identity,
    quat_inverse,
    quat_multiply,
    quat_normalize,
    quat_rotate_vector,
    quat_rotation_angle,
    quat_slerp,
)


def random_unit_quats(n, seed=7):
    rng = np.random.default_rng(seed)
    return [quat_normalize(q) for q in rng.normal(size=(n, 4))]


class TestVectors:

    def test_normalize_zero_vector_is_returned_unchanged(self):
        np.testing.assert_array_equal(normalize(np.zeros(3)), np.zeros(3))

    def test_normalize(self):
        np.testing.assert_allclose(normalize(np.array([3.0, 0.0, 4.0])), [0.6, 0.0, 0.8])


class TestSlerp:

    @pytest.mark.parametrize("t", [0.0, 0.3, 0.5, 1.0])
    def test_slerp_of_equal_quaternions_is_identity_operation(self, t):
        for q in random_unit_quats(20):
            np.testing.assert_allclose(quat_slerp(q, q, t), q, atol=1e-12)

    def test_slerp_halfway(self):
        target = quat_from_axis_angle(Z_AXIS, math.pi / 2)
        half = quat_slerp(quat_identity(), target, 0.5)
        assert quat_angle(half, quat_from_axis_angle(Z_AXIS, math.pi / 4)) < 1e-6

    def test_slerp_takes_shortest_path(self):
        target = quat_from_axis_angle(Z_AXIS, math.pi / 2)
        half = quat_slerp(quat_identity(), -target, 0.5)
        assert quat_angle(half, quat_from_axis_angle(Z_AXIS, math.pi / 4)) < 1e-6


class TestFromUnitVectors:

    def test_same_vector_gives_identity(self):
        for v in (X_AXIS, Y_AXIS, normalize(np.array([1.0, 2.0, -3.0]))):
            np.testing.assert_allclose(quat_from_unit_vectors(v, v), quat_identity(), atol=1e-12)

    @pytest.mark.parametrize("v", [X_AXIS, Y_AXIS, Z_AXIS, np.array([0.6, 0.0, 0.8])])
    def test_opposite_vectors_give_half_turn(self, v):
        q = quat_from_unit_vectors(v, -v)
        assert np.all(np.isfinite(q))
        assert quat_rotation_angle(q) == pytest.approx(math.pi)
        axis = q[1:]
        assert abs(float(np.dot(axis, v))) < 1e-9
        np.testing.assert_allclose(quat_rotate_vector(q, v), -v, atol=1e-9)

    def test_rotates_from_onto_to(self):
        a = normalize(np.array([1.0, 1.0, 0.0]))
        b = normalize(np.array([0.0, -1.0, 2.0]))
        np.testing.assert_allclose(quat_rotate_vector(quat_from_unit_vectors(a, b), a), b, atol=1e-9)


class TestBasis:

    def test_identity_basis(self):
        np.testing.assert_allclose(quat_from_basis(X_AXIS, Y_AXIS, Z_AXIS), quat_identity(), atol=1e-12)

    def test_basis_roundtrip_for_rotations(self):
        for q in random_unit_quats(30, seed=3):
            basis = quat_from_basis(
                quat_rotate_vector(q, X_AXIS),
                quat_rotate_vector(q, Y_AXIS),
                quat_rotate_vector(q, Z_AXIS),
            )
            assert quat_angle(basis, q) < 1e-6

    def test_half_turn_basis(self):
        # Trace is -1 here, exercising the non-positive-trace branches
        q = quat_from_basis(-X_AXIS, Y_AXIS, -Z_AXIS)
        assert quat_angle(q, quat_from_axis_angle(Y_AXIS, math.pi)) < 1e-6


class TestQuaternionAlgebra:

    def test_inverse(self):
        for q in random_unit_quats(10):
            np.testing.assert_allclose(quat_multiply(q, quat_inverse(q)), quat_identity(), atol=1e-9)

    def test_rotation_composes(self):
        a = quat_from_axis_angle(Z_AXIS, math.pi / 2)
        b = quat_from_axis_angle(X_AXIS, math.pi / 2)
        v = np.array([1.0, 0.0, 0.0])
        np.testing.assert_allclose(
            quat_rotate_vector(quat_multiply(b, a), v),
            quat_rotate_vector(b, quat_rotate_vector(a, v)),
            atol=1e-9,
        )
