import numpy as np
import pytest

from transparent_track.errors import ConfigurationError, FitStatus
from transparent_track.fitting.ellipse_fitter import constrained_ellipse_fit
from transparent_track.geometry.ellipse import ellipse_perimeter_points

TRUTH = np.array([320.0, 240.0, 5000.0, 0.5, np.pi / 4])
LB = (0.0, 0.0, 800.0, 0.0, 0.0)
UB = (640.0, 480.0, 20000.0, 0.9, np.pi)


def points(p=TRUTH, n=40):
    pts = ellipse_perimeter_points(p, n)
    return pts[:, 0], pts[:, 1]


def test_clean_ellipse_is_recovered():
    fit = constrained_ellipse_fit(*points(), LB, UB)
    assert fit.status is FitStatus.SUCCESS
    np.testing.assert_allclose(fit.ellipse, TRUTH, rtol=1e-6)
    assert fit.rmse < 1e-6
    assert fit.n_points == 40


def test_noisy_ellipse_is_close():
    rng = np.random.default_rng(7)
    x, y = points(n=60)
    fit = constrained_ellipse_fit(x + rng.normal(0, 0.3, x.size), y + rng.normal(0, 0.3, y.size), LB, UB)
    assert fit.is_success
    np.testing.assert_allclose(fit.ellipse[:2], TRUTH[:2], atol=0.5)
    assert fit.ellipse[2] == pytest.approx(TRUTH[2], rel=0.05)
    assert 0.1 < fit.rmse < 0.6


def test_fewer_than_five_points():
    x, y = points(n=4)
    fit = constrained_ellipse_fit(x, y, LB, UB)
    assert fit.status is FitStatus.INSUFFICIENT_DATA
    assert np.all(np.isnan(fit.ellipse))
    assert fit.rmse == np.inf


def test_non_finite_points_are_dropped():
    x, y = points(n=6)
    x = np.append(x, [np.nan, 1.0])
    y = np.append(y, [2.0, np.inf])
    fit = constrained_ellipse_fit(x, y, LB, UB)
    assert fit.n_points == 6
    assert fit.is_success


def test_collinear_points_are_degenerate():
    x = np.linspace(100, 200, 10)
    fit = constrained_ellipse_fit(x, 0.5 * x + 3, LB, UB)
    assert fit.status is FitStatus.DEGENERATE_GEOMETRY
    assert np.all(np.isnan(fit.ellipse))
    assert fit.rmse == np.inf


def test_eccentricity_bound_is_respected():
    elongated = np.array([320.0, 240.0, 5000.0, 0.8, 0.3])
    fit = constrained_ellipse_fit(*points(elongated), LB, (640.0, 480.0, 20000.0, 0.3, np.pi))
    assert fit.is_success
    assert fit.ellipse[3] <= 0.3 + 1e-12
    assert fit.rmse > 0.1


def test_equal_bounds_pin_a_parameter():
    lb = list(LB)
    ub = list(UB)
    lb[2] = ub[2] = 4000.0
    fit = constrained_ellipse_fit(*points(), lb, ub)
    assert fit.ellipse[2] == 4000.0


def test_fixed_params_are_held():
    fit = constrained_ellipse_fit(*points(), LB, UB, fixed_params=[np.nan, np.nan, np.nan, 0.5, 0.5])
    assert fit.ellipse[3] == 0.5
    assert fit.ellipse[4] == 0.5
    assert fit.rmse > 0


def test_unbounded_fit():
    fit = constrained_ellipse_fit(*points())
    np.testing.assert_allclose(fit.ellipse, TRUTH, rtol=1e-6)


def test_partially_open_bounds():
    lb = (-np.inf, -np.inf, 800, -np.inf, 0)
    ub = (np.inf, 480, np.inf, 0.9, np.inf)
    fit = constrained_ellipse_fit(*points(), lb, ub)
    assert fit.is_success
    np.testing.assert_allclose(fit.ellipse, TRUTH, rtol=1e-6)


@pytest.mark.parametrize("lb, ub", [
    ((0, 0, 800, 0.5, 0), (640, 480, 20000, 0.4, np.pi)),
    ((0, 0, 800, 0, 0), (640, 480, 20000, 1.0, np.pi)),
    ((0, 0, 800, 0), (640, 480, 20000, 0.6)),
    ((0, 0, -1, 0, 0), (640, 480, 20000, 0.6, np.pi)),
    ((-np.inf, 300, 0, 0, 0), (np.inf, 200, np.inf, 0.9, np.pi)),
    ((-np.inf, -np.inf, -5, 0, 0), (np.inf, np.inf, np.inf, 0.9, np.pi)),
    ((-np.inf, -np.inf, 0, 0, 0), (np.inf, np.inf, np.inf, 1.0, np.inf)),
    ((-np.inf, -np.inf, 0, 0, 4.0), (np.inf, np.inf, np.inf, 0.9, np.inf)),
])
def test_malformed_bounds_raise(lb, ub):
    with pytest.raises(ConfigurationError):
        constrained_ellipse_fit(*points(), lb, ub)


def test_returned_parameters_stay_in_range():
    rng = np.random.default_rng(3)
    for _ in range(5):
        truth = np.array([rng.uniform(200, 400), rng.uniform(150, 300), rng.uniform(1500, 8000),
                          rng.uniform(0.0, 0.8), rng.uniform(0, np.pi)])
        x, y = points(truth, 30)
        fit = constrained_ellipse_fit(x + rng.normal(0, 0.2, 30), y + rng.normal(0, 0.2, 30), LB, UB)
        assert 0.0 <= fit.ellipse[4] < np.pi
        assert 0.0 <= fit.ellipse[3] < 1.0
