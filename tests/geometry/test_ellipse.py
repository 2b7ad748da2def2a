import numpy as np
import pytest

from transparent_track.geometry.ellipse import (
    axes_to_transparent, conic_to_transparent, ellipse_perimeter_points, ellipse_radial_distance,
    fit_ellipse_direct, points_are_collinear, transparent_to_axes, transparent_to_conic, wrap_theta,
)

ELLIPSE = np.array([300.0, 200.0, 4000.0, 0.7, 1.0])


def test_wrap_theta():
    assert wrap_theta(-0.1) == pytest.approx(np.pi - 0.1)
    assert wrap_theta(np.pi) == pytest.approx(0.0)
    assert wrap_theta(1.5 * np.pi) == pytest.approx(0.5 * np.pi)
    assert 0.0 <= wrap_theta(-1e-18) < np.pi


def test_conic_roundtrip():
    np.testing.assert_allclose(conic_to_transparent(transparent_to_conic(ELLIPSE)), ELLIPSE, rtol=1e-10)


def test_conic_that_is_not_an_ellipse():
    # hyperbola x^2 - y^2 = 1
    assert conic_to_transparent([1.0, 0.0, -1.0, 0.0, 0.0, -1.0]) is None
    # imaginary ellipse x^2 + y^2 = -1
    assert conic_to_transparent([1.0, 0.0, 1.0, 0.0, 0.0, 1.0]) is None


def test_axes_swap_when_minor_exceeds_major():
    p = axes_to_transparent(0.0, 0.0, 2.0, 4.0, 0.0)
    _, _, a, b, theta = transparent_to_axes(p)
    assert a == pytest.approx(4.0)
    assert b == pytest.approx(2.0)
    assert theta == pytest.approx(np.pi / 2)


def test_direct_fit_recovers_exact_ellipse():
    pts = ellipse_perimeter_points(ELLIPSE, 12)
    np.testing.assert_allclose(fit_ellipse_direct(pts[:, 0], pts[:, 1]), ELLIPSE, rtol=1e-8)


def test_direct_fit_of_circle_has_zero_eccentricity():
    t = np.linspace(0, 2 * np.pi, 9, endpoint=False)
    p = fit_ellipse_direct(50 + 10 * np.cos(t), 60 + 10 * np.sin(t))
    assert p[3] == pytest.approx(0.0, abs=1e-5)
    assert p[2] == pytest.approx(np.pi * 100)


def test_direct_fit_needs_five_points():
    assert fit_ellipse_direct([0, 1, 2, 3], [1, 0, 1, 2]) is None


def test_radial_distance_sign():
    pts = ellipse_perimeter_points(ELLIPSE, 10)
    np.testing.assert_allclose(ellipse_radial_distance(ELLIPSE, pts[:, 0], pts[:, 1]), 0.0, atol=1e-9)
    cx, cy = ELLIPSE[:2]
    outside = ellipse_radial_distance(ELLIPSE, 2 * pts[:, 0] - cx, 2 * pts[:, 1] - cy)
    assert np.all(outside > 0)
    assert ellipse_radial_distance(ELLIPSE, np.array([cx]), np.array([cy]))[0] < 0


def test_collinear_points():
    x = np.arange(6.0)
    assert points_are_collinear(x, 2 * x + 1)
    assert not points_are_collinear(x, x ** 2)
