"""
Unit tests for angle wrapping and blending.

Covers the (-π, π] convention used by every heading in the package and
the shortest-arc blend used by the complementary compass.
"""

import unittest

import numpy as np
import pytest
from numpy.testing import assert_allclose

from indoornav.utils import angle_diff, blend_angles, wrap_angle, wrap_angle_array


class TestWrapAngle(unittest.TestCase):
    """Test wrapping to (-π, π]."""

    def test_identity_inside_range(self):
        for angle in (0.0, 0.5, -0.5, 3.0, -3.0):
            self.assertAlmostEqual(wrap_angle(angle), angle, places=12)

    def test_multiples_of_two_pi(self):
        self.assertAlmostEqual(wrap_angle(2 * np.pi + 0.1), 0.1, places=12)
        self.assertAlmostEqual(wrap_angle(-4 * np.pi - 0.1), -0.1, places=12)
        self.assertAlmostEqual(wrap_angle(3.5 * np.pi), -0.5 * np.pi, places=12)

    def test_minus_pi_maps_to_pi(self):
        self.assertEqual(wrap_angle(-np.pi), np.pi)
        self.assertAlmostEqual(wrap_angle(np.pi), np.pi, places=12)

    def test_array_version_matches_scalar(self):
        angles = np.array([-7.0, -np.pi, -1.0, 0.0, 2.0, np.pi, 9.0])
        wrapped = wrap_angle_array(angles)
        expected = np.array([wrap_angle(a) for a in angles])
        assert_allclose(wrapped, expected, atol=1e-12)
        self.assertTrue(np.all(wrapped > -np.pi))
        self.assertTrue(np.all(wrapped <= np.pi))


class TestAngleDiff(unittest.TestCase):
    """Test shortest signed difference."""

    def test_across_discontinuity(self):
        diff = angle_diff(np.deg2rad(179.0), np.deg2rad(-179.0))
        self.assertAlmostEqual(diff, np.deg2rad(-2.0), places=12)

    def test_array_inputs(self):
        diff = angle_diff(np.array([0.1, 3.1]), np.array([-0.1, -3.1]))
        assert_allclose(diff, [0.2, 6.2 - 2 * np.pi], atol=1e-12)


class TestBlendAngles(unittest.TestCase):
    """Test the shortest-arc weighted blend."""

    def test_plain_weighted_mean(self):
        self.assertAlmostEqual(blend_angles(0.2, 0.0, 0.5), 0.1, places=12)
        self.assertAlmostEqual(blend_angles(1.0, 0.0, 0.98), 0.98, places=12)

    def test_blend_across_pi(self):
        a = np.deg2rad(179.0)
        b = np.deg2rad(-179.0)
        # Midpoint is ±180°, not 0°
        self.assertAlmostEqual(abs(blend_angles(a, b, 0.5)), np.pi, places=12)
        # Mostly a: just below 180° on a's side
        blended = blend_angles(a, b, 0.9)
        self.assertAlmostEqual(blended, np.deg2rad(179.2), places=9)
        # Mostly b: on b's side
        blended = blend_angles(a, b, 0.1)
        self.assertAlmostEqual(blended, np.deg2rad(-179.2), places=9)

    def test_full_weight_returns_primary_exactly(self):
        for primary, secondary in [(0.3, -2.9), (3.1, -3.1), (-3.1, 3.1), (1e-3, 2.0)]:
            self.assertEqual(blend_angles(primary, secondary, 1.0), primary)

    def test_zero_weight_returns_secondary_exactly(self):
        for primary, secondary in [(0.3, -2.9), (3.1, -3.1), (-3.1, 3.1), (1e-3, 2.0)]:
            self.assertEqual(blend_angles(primary, secondary, 0.0), secondary)

    def test_result_in_canonical_range(self):
        rng = np.random.default_rng(7)
        for _ in range(200):
            a, b = rng.uniform(-np.pi, np.pi, size=2)
            w = rng.uniform(0.0, 1.0)
            blended = blend_angles(a, b, w)
            self.assertGreater(blended, -np.pi)
            self.assertLessEqual(blended, np.pi)


def test_blend_rejects_bad_weight():
    with pytest.raises(ValueError):
        blend_angles(0.0, 0.0, 1.5)
    with pytest.raises(ValueError):
        blend_angles(0.0, 0.0, -0.1)
