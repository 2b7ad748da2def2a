import numpy as np

from transparent_track.fitting.ellipse_fitter import constrained_ellipse_fit
from transparent_track.fitting.split_halves import split_halves_sd, split_point_halves
from transparent_track.geometry.ellipse import ellipse_perimeter_points

TRUTH = np.array([320.0, 240.0, 5000.0, 0.5, np.pi / 4])


def test_halves_partition_the_points():
    rng = np.random.default_rng(0)
    x, y = rng.uniform(0, 100, 41), rng.uniform(0, 100, 41)
    halves = list(split_point_halves(x, y, 3))
    assert len(halves) == 6
    for (lx, _), (ux, _) in zip(halves[::2], halves[1::2]):
        assert lx.size + ux.size == 41
        assert abs(lx.size - ux.size) <= 1


def test_clean_ellipse_has_near_zero_spread():
    pts = ellipse_perimeter_points(TRUTH, 40)
    sd = split_halves_sd(pts[:, 0], pts[:, 1], 2, lambda hx, hy: constrained_ellipse_fit(hx, hy).ellipse, 5)
    assert sd.shape == (5,)
    np.testing.assert_allclose(sd, 0.0, atol=1e-3)


def test_noise_gives_positive_spread():
    rng = np.random.default_rng(1)
    pts = ellipse_perimeter_points(TRUTH, 60) + rng.normal(0, 0.5, (60, 2))
    sd = split_halves_sd(pts[:, 0], pts[:, 1], 2, lambda hx, hy: constrained_ellipse_fit(hx, hy).ellipse, 5)
    assert np.all(sd[:3] > 0)


def test_failed_half_fits_give_nan():
    pts = ellipse_perimeter_points(TRUTH, 40)
    sd = split_halves_sd(pts[:, 0], pts[:, 1], 2, lambda hx, hy: np.full(5, np.nan), 5)
    assert np.all(np.isnan(sd))
    assert np.all(np.isnan(split_halves_sd(pts[:, 0], pts[:, 1], 0, None, 5)))
