# geometry/ellipse.py
"""
Ellipse representations.

transparent: (x, y, area, eccentricity, theta), theta in [0, pi)
axes:        (x, y, semi-major a, semi-minor b, theta of the major axis)
conic:       (A, B, C, D, E, F) of A x^2 + B xy + C y^2 + D x + E y + F = 0
"""
from __future__ import annotations
import numpy as np

ELLIPSE_LABELS = ("x", "y", "area", "eccentricity", "theta")
ELLIPSE_UNITS = ("pixels", "pixels", "squared pixels", "non-linear eccentricity", "rads")
N_ELLIPSE_PARAMS = 5

_COLLINEAR_RTOL = 1e-9


def nan_ellipse() -> np.ndarray:
    return np.full(N_ELLIPSE_PARAMS, np.nan)


def wrap_theta(theta):
    """Map any angle into [0, pi)."""
    wrapped = np.mod(theta, np.pi)
    # mod can return pi itself for tiny negative inputs
    wrapped = np.where(wrapped >= np.pi, 0.0, wrapped)
    return float(wrapped) if wrapped.ndim == 0 else wrapped


def transparent_to_axes(p) -> tuple[float, float, float, float, float]:
    cx, cy, area, ecc, theta = (float(v) for v in p)
    ratio = np.sqrt(1.0 - ecc * ecc)
    a = np.sqrt(max(area, 0.0) / (np.pi * ratio))
    return cx, cy, a, a * ratio, theta


def axes_to_transparent(cx, cy, a, b, theta) -> np.ndarray:
    a, b = abs(float(a)), abs(float(b))
    if b > a:
        a, b = b, a
        theta = theta + np.pi / 2
    ecc = np.sqrt(max(0.0, 1.0 - (b / a) ** 2)) if a > 0 else 0.0
    return np.array([cx, cy, np.pi * a * b, ecc, wrap_theta(theta)], dtype=float)


def conic_to_transparent(coef) -> np.ndarray | None:
    """Transparent parameters of a conic, or None if it is not a real ellipse."""
    A, B, C, D, E, F = (float(v) for v in coef)
    den = B * B - 4.0 * A * C
    if not den < 0:
        return None
    cx = (2.0 * C * D - B * E) / den
    cy = (2.0 * A * E - B * D) / den
    num = 2.0 * (A * E * E + C * D * D - B * D * E + den * F)
    root = np.sqrt((A - C) ** 2 + B * B)
    major_sq = num * ((A + C) + root)
    minor_sq = num * ((A + C) - root)
    if not (major_sq > 0 and minor_sq > 0):
        return None
    a = np.sqrt(major_sq) / -den
    b = np.sqrt(minor_sq) / -den
    if B != 0:
        theta = np.arctan((C - A - root) / B)
    else:
        theta = 0.0 if A < C else np.pi / 2
    out = axes_to_transparent(cx, cy, a, b, theta)
    return out if np.all(np.isfinite(out)) else None


def transparent_to_conic(p) -> np.ndarray:
    cx, cy, a, b, theta = transparent_to_axes(p)
    s, c = np.sin(theta), np.cos(theta)
    A = a * a * s * s + b * b * c * c
    B = 2.0 * (b * b - a * a) * s * c
    C = a * a * c * c + b * b * s * s
    D = -2.0 * A * cx - B * cy
    E = -B * cx - 2.0 * C * cy
    F = A * cx * cx + B * cx * cy + C * cy * cy - a * a * b * b
    return np.array([A, B, C, D, E, F])


def points_are_collinear(x: np.ndarray, y: np.ndarray) -> bool:
    P = np.column_stack([x, y]).astype(float)
    P = P - P.mean(axis=0)
    sv = np.linalg.svd(P, compute_uv=False)
    return bool(sv[0] == 0 or sv[-1] / sv[0] < _COLLINEAR_RTOL)


def fit_ellipse_direct(x: np.ndarray, y: np.ndarray) -> np.ndarray | None:
    """
    Direct least-squares ellipse fit (Fitzgibbon et al., in the numerically
    stable form of Halir & Flusser), on centered and scaled coordinates.
    Returns transparent parameters, or None when no ellipse fits the points.

    Written in numpy rather than calling cv2.fitEllipseDirect, which only takes
    float32 points; the pose search differentiates projected ellipses by finite
    differences, and float32 rounding swamps those steps.
    """
    x = np.asarray(x, dtype=float)
    y = np.asarray(y, dtype=float)
    if x.size < 5:
        return None
    mx, my = x.mean(), y.mean()
    scale = np.sqrt(np.mean((x - mx) ** 2 + (y - my) ** 2))
    if not scale > 0:
        return None
    xn = (x - mx) / scale
    yn = (y - my) / scale

    D1 = np.column_stack([xn * xn, xn * yn, yn * yn])
    D2 = np.column_stack([xn, yn, np.ones_like(xn)])
    S1 = D1.T @ D1
    S2 = D1.T @ D2
    S3 = D2.T @ D2
    try:
        T = -np.linalg.solve(S3, S2.T)
    except np.linalg.LinAlgError:
        return None
    M = S1 + S2 @ T
    M = np.vstack([M[2] / 2.0, -M[1], M[0] / 2.0])
    eigval, eigvec = np.linalg.eig(M)
    eigvec = np.real(eigvec)
    cond = 4.0 * eigvec[0] * eigvec[2] - eigvec[1] ** 2
    candidates = np.flatnonzero(cond > 0)
    if candidates.size == 0:
        return None
    a1 = eigvec[:, candidates[0]]
    coef = np.concatenate([a1, T @ a1])

    p = conic_to_transparent(coef)
    if p is None:
        return None
    # back to image units
    p[0] = p[0] * scale + mx
    p[1] = p[1] * scale + my
    p[2] = p[2] * scale * scale
    return p


def ellipse_radial_distance(p, x: np.ndarray, y: np.ndarray) -> np.ndarray:
    """
    Signed distance of each point from the ellipse, measured along the ray from
    the ellipse center through the point (positive outside).
    """
    cx, cy, a, b, theta = transparent_to_axes(p)
    dx = np.asarray(x, dtype=float) - cx
    dy = np.asarray(y, dtype=float) - cy
    c, s = np.cos(theta), np.sin(theta)
    u = c * dx + s * dy
    v = -s * dx + c * dy
    r = np.hypot(u, v)
    with np.errstate(divide="ignore", invalid="ignore"):
        k = np.sqrt((u / a) ** 2 + (v / b) ** 2)
        dist = np.where(k > 0, r - r / k, -b)
    return dist


def ellipse_perimeter_points(p, n: int = 20) -> np.ndarray:
    """(n, 2) points evenly spaced in parametric angle around the ellipse."""
    cx, cy, a, b, theta = transparent_to_axes(p)
    t = np.linspace(0.0, 2.0 * np.pi, int(n), endpoint=False)
    c, s = np.cos(theta), np.sin(theta)
    ex = a * np.cos(t)
    ey = b * np.sin(t)
    return np.column_stack([cx + c * ex - s * ey, cy + s * ex + c * ey])
