"""
Unit tests for artrack.coords.rotations.

Tests cover:
    - Hamilton product, inverse and normalisation
    - Conversions between quaternions, matrices and rotation vectors
    - Vector rotation
    - Quaternion averaging
"""

import unittest
import warnings

import numpy as np
from numpy.testing import assert_allclose

from artrack.autodiff import jacobian, make_variables, values
from artrack.coords import (
    IDENTITY_QUAT,
    quat_align,
    quat_average,
    quat_conjugate,
    quat_inverse,
    quat_multiply,
    quat_norm,
    quat_normalize,
    quat_to_rotation_matrix,
    quat_to_rotvec,
    rotate_vector,
    rotation_matrix_to_quat,
    rotvec_to_quat,
)


def quat_about(axis, angle):
    axis = np.asarray(axis, dtype=float)
    axis = axis / np.linalg.norm(axis)
    return np.concatenate([[np.cos(angle / 2)], np.sin(angle / 2) * axis])


class TestQuaternionAlgebra(unittest.TestCase):
    def test_identity_is_neutral(self):
        q = quat_about([1, 2, 3], 0.7)
        assert_allclose(quat_multiply(IDENTITY_QUAT, q), q)
        assert_allclose(quat_multiply(q, IDENTITY_QUAT), q)

    def test_inverse(self):
        q = 2.0 * quat_about([0, 1, 1], 1.2)
        assert_allclose(quat_multiply(q, quat_inverse(q)), IDENTITY_QUAT, atol=1e-12)

    def test_inverse_of_zero_raises(self):
        with self.assertRaises(ValueError):
            quat_inverse(np.zeros(4))

    def test_product_composes_rotations(self):
        """p ⊗ q rotates by q first, then by p."""
        p = quat_about([0, 0, 1], np.pi / 2)
        q = quat_about([1, 0, 0], np.pi / 2)
        v = np.array([0.0, 1.0, 0.0])
        expected = rotate_vector(p, rotate_vector(q, v))
        assert_allclose(rotate_vector(quat_multiply(p, q), v), expected, atol=1e-12)

    def test_conjugate(self):
        assert_allclose(quat_conjugate([1.0, 2.0, 3.0, 4.0]), [1.0, -2.0, -3.0, -4.0])

    def test_normalize(self):
        q = quat_normalize(np.array([0.0, 3.0, 0.0, 4.0]))
        self.assertAlmostEqual(quat_norm(q), 1.0)

    def test_normalize_below_epsilon_is_unchanged(self):
        q = np.array([1e-8, 0.0, 0.0, 0.0])
        assert_allclose(quat_normalize(q, eps=1e-6), q)

    def test_bad_shape(self):
        with self.assertRaises(ValueError):
            quat_multiply(np.zeros(3), IDENTITY_QUAT)

    def test_align(self):
        q = quat_about([0, 0, 1], 0.3)
        assert_allclose(quat_align(-q, q), q)
        assert_allclose(quat_align(q, q), q)


class TestConversions(unittest.TestCase):
    def test_rotation_about_z(self):
        q = rotvec_to_quat([0.0, 0.0, np.pi / 2])
        assert_allclose(q, [np.cos(np.pi / 4), 0.0, 0.0, np.sin(np.pi / 4)], atol=1e-12)
        assert_allclose(rotate_vector(q, [1.0, 0.0, 0.0]), [0.0, 1.0, 0.0], atol=1e-12)

    def test_matrix_round_trip(self):
        q = quat_about([0.3, -0.5, 0.8], 2.9)
        R = quat_to_rotation_matrix(q)
        assert_allclose(R @ R.T, np.eye(3), atol=1e-12)
        self.assertAlmostEqual(np.linalg.det(R), 1.0)
        q_back = rotation_matrix_to_quat(R)
        assert_allclose(q_back * np.sign(q_back[0]), q * np.sign(q[0]), atol=1e-12)

    def test_rotvec_round_trip(self):
        rvec = np.array([0.4, -1.1, 0.2])
        assert_allclose(quat_to_rotvec(rotvec_to_quat(rvec)), rvec, atol=1e-12)

    def test_quat_to_rotvec_uses_shortest_rotation(self):
        q = -rotvec_to_quat([0.0, 0.2, 0.0])
        assert_allclose(quat_to_rotvec(q), [0.0, 0.2, 0.0], atol=1e-12)

    def test_rotvec_zero_is_identity_with_finite_derivative(self):
        out = rotvec_to_quat(make_variables(np.zeros(3), 0, 3))
        assert_allclose(values(out), IDENTITY_QUAT)
        J = jacobian(out, 3)
        assert_allclose(J[0], np.zeros(3))
        assert_allclose(J[1:], 0.5 * np.eye(3))

    def test_rotate_many_vectors(self):
        q = quat_about([0, 0, 1], np.pi)
        v = np.array([[1.0, 0.0, 0.0], [0.0, 1.0, 2.0]])
        assert_allclose(rotate_vector(q, v), [[-1.0, 0.0, 0.0], [0.0, -1.0, 2.0]], atol=1e-12)

    def test_matrix_bad_shape(self):
        with self.assertRaises(ValueError):
            rotation_matrix_to_quat(np.eye(4))


class TestQuaternionAverage(unittest.TestCase):
    def test_symmetric_rotations_average_to_identity(self):
        quats = [quat_about([0, 0, 1], 0.2), quat_about([0, 0, 1], -0.2)]
        assert_allclose(quat_average(quats), IDENTITY_QUAT, atol=1e-12)

    def test_sign_invariance(self):
        q = quat_about([1, 1, 0], 0.8)
        avg = quat_average([q, -q, q])
        assert_allclose(avg, q * np.sign(q[0]), atol=1e-12)

    def test_result_has_non_negative_scalar(self):
        q = -quat_about([0, 1, 0], 0.5)
        avg = quat_average([q])
        self.assertGreaterEqual(avg[0], 0.0)
        self.assertAlmostEqual(np.linalg.norm(avg), 1.0)

    def test_weights(self):
        a = quat_about([0, 0, 1], 0.0)
        b = quat_about([0, 0, 1], 0.4)
        avg = quat_average([a, b], weights=[0.0, 1.0])
        assert_allclose(avg, b, atol=1e-12)

    def test_ambiguous_average_warns(self):
        a = quat_about([0, 0, 1], 0.0)
        b = quat_about([0, 0, 1], np.pi)
        with warnings.catch_warnings(record=True) as caught:
            warnings.simplefilter("always")
            quat_average([a, b])
        self.assertTrue(any(issubclass(w.category, RuntimeWarning) for w in caught))

    def test_empty_raises(self):
        with self.assertRaises(ValueError):
            quat_average([])

    def test_weight_shape_mismatch(self):
        with self.assertRaises(ValueError):
            quat_average([IDENTITY_QUAT, IDENTITY_QUAT], weights=[1.0])
