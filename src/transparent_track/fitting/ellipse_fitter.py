# fitting/ellipse_fitter.py
"""
Bounded least-squares fit of a transparent ellipse to boundary points.

The direct algebraic fit gives the starting point; if it does not describe an
ellipse, a circle through the mean radius is used instead. The start is clipped
into the bounds and refined with scipy's trust-region-reflective solver on the
radial point-to-ellipse distances. Parameters with lb == ub, or pinned through
fixed_params, are held constant.
"""
from __future__ import annotations
from dataclasses import dataclass
import numpy as np
from scipy.optimize import least_squares

from transparent_track.config.fit_config import validate_ellipse_bounds
from transparent_track.errors import FitStatus
from transparent_track.geometry.ellipse import (
    ellipse_radial_distance, fit_ellipse_direct, nan_ellipse, points_are_collinear, wrap_theta,
)

MIN_POINTS = 5
_MIN_AREA = 1e-9
_MAX_ECCENTRICITY = 1.0 - 1e-9
_OPEN_LB = np.array([-np.inf, -np.inf, 0.0, 0.0, 0.0])
_OPEN_UB = np.array([np.inf, np.inf, np.inf, _MAX_ECCENTRICITY, np.pi])


@dataclass
class EllipseFitResult:
    ellipse: np.ndarray
    rmse: float
    status: FitStatus = FitStatus.SUCCESS
    n_points: int = 0

    @property
    def is_success(self) -> bool:
        return self.status is FitStatus.SUCCESS


def failed_ellipse_fit(status: FitStatus, n_points: int = 0) -> EllipseFitResult:
    return EllipseFitResult(ellipse=nan_ellipse(), rmse=np.inf, status=status, n_points=n_points)


def clean_points(x, y) -> tuple[np.ndarray, np.ndarray]:
    x = np.asarray(x, dtype=float).reshape(-1)
    y = np.asarray(y, dtype=float).reshape(-1)
    if x.shape != y.shape:
        raise ValueError(f"x and y must have the same length, got {x.size} and {y.size}")
    keep = np.isfinite(x) & np.isfinite(y)
    return x[keep], y[keep]


def _initial_guess(x: np.ndarray, y: np.ndarray) -> np.ndarray:
    p = fit_ellipse_direct(x, y)
    if p is not None:
        return p
    cx, cy = x.mean(), y.mean()
    r = np.mean(np.hypot(x - cx, y - cy))
    return np.array([cx, cy, np.pi * r * r, 0.0, 0.0])


def _ellipse_residuals(p, x, y) -> np.ndarray:
    p = np.array(p, dtype=float)
    p[2] = max(p[2], _MIN_AREA)
    p[3] = min(max(p[3], 0.0), _MAX_ECCENTRICITY)
    return ellipse_radial_distance(p, x, y)


def constrained_ellipse_fit(x, y,
                            lb=None,
                            ub=None,
                            fixed_params=None,
                            max_nfev: int = 400) -> EllipseFitResult:
    """
    Fit (x, y, area, eccentricity, theta) to the points.

    fixed_params: optional 5-vector; finite entries are held at their value.
    Returns a NaN ellipse with infinite error and status INSUFFICIENT_DATA for
    fewer than 5 points, DEGENERATE_GEOMETRY for collinear points.
    Non-finite bound entries leave that side open. Malformed bounds raise
    ConfigurationError.
    """
    x, y = clean_points(x, y)
    n = x.size
    lb = np.full(5, -np.inf) if lb is None else np.asarray(lb, dtype=float)
    ub = np.full(5, np.inf) if ub is None else np.asarray(ub, dtype=float)
    if lb.shape == (5,) and ub.shape == (5,):
        # open entries take the widest range the parameter allows
        lb = np.where(np.isfinite(lb), lb, _OPEN_LB)
        ub = np.where(np.isfinite(ub), ub, _OPEN_UB)
    validate_ellipse_bounds(lb, ub, require_finite=False)

    if n < MIN_POINTS:
        return failed_ellipse_fit(FitStatus.INSUFFICIENT_DATA, n)
    if points_are_collinear(x, y):
        return failed_ellipse_fit(FitStatus.DEGENERATE_GEOMETRY, n)

    p0 = _initial_guess(x, y)
    fixed = np.isclose(lb, ub)
    if fixed_params is not None:
        pins = np.asarray(fixed_params, dtype=float).reshape(5)
        pinned = np.isfinite(pins)
        p0[pinned] = pins[pinned]
        fixed |= pinned
    p0 = np.clip(p0, lb, ub)
    free = ~fixed

    if not np.any(free):
        res = _ellipse_residuals(p0, x, y)
        return EllipseFitResult(ellipse=p0, rmse=float(np.sqrt(np.mean(res ** 2))), n_points=n)

    def residuals(q):
        p = p0.copy()
        p[free] = q
        return _ellipse_residuals(p, x, y)

    sol = least_squares(residuals, p0[free], bounds=(lb[free], ub[free]),
                        method="trf", x_scale="jac", max_nfev=max_nfev,
                        ftol=1e-12, xtol=1e-12, gtol=1e-12)
    p = p0.copy()
    p[free] = sol.x
    p[4] = wrap_theta(p[4])
    if not np.all(np.isfinite(p)):
        return failed_ellipse_fit(FitStatus.DEGENERATE_GEOMETRY, n)
    rmse = float(np.sqrt(np.mean(sol.fun ** 2)))
    return EllipseFitResult(ellipse=p, rmse=rmse, n_points=n)
