# ray_tracing/ray_tracer.py
"""
Virtual image of an eye point seen through the cornea.

The trace is done independently in the p1p2 and p1p3 planes. In each plane a
1D Nelder-Mead search, seeded at theta = 0, finds the departure angle of the ray
whose exit path passes closest to the camera. The exit ray is then extended
back to the depth of the source point; that location is the virtual image.
"""
from __future__ import annotations
import math
import numpy as np
from numba import njit
from scipy.optimize import minimize

from transparent_track.errors import RefractionError
from transparent_track.eye_model.optical_system import OpticalSystem

TRACE_OK = 0
TRACE_MISS = 1
TRACE_TIR = 2

_EPS = 1e-9


@njit(cache=True, nogil=True)
def _on_face(q1, center, radius_axial):
    # negative radius: the surface bulges towards +p1
    if radius_axial < 0.0:
        return q1 >= center
    return q1 <= center


@njit(cache=True, nogil=True)
def _trace_plane(p1, h, theta, system):
    """
    Trace a ray leaving (p1, h) at angle theta (rad, from the +p1 axis) through
    the surfaces in `system`. Returns (status, q1, qh, d1, dh): the last
    intersection point and the outgoing unit direction.
    """
    d1 = math.cos(theta)
    dh = math.sin(theta)
    x1 = p1
    xh = h
    n_prev = system[0, 3]

    for i in range(1, system.shape[0]):
        c = system[i, 0]
        ra = system[i, 1]
        a = abs(ra)
        b = abs(system[i, 2])
        n_next = system[i, 3]

        # ray vs. ellipse ((p1 - c)/a)^2 + (h/b)^2 = 1
        u1 = (x1 - c) / a
        uh = xh / b
        v1 = d1 / a
        vh = dh / b
        A = v1 * v1 + vh * vh
        B = 2.0 * (u1 * v1 + uh * vh)
        C = u1 * u1 + uh * uh - 1.0
        disc = B * B - 4.0 * A * C
        if disc < 0.0:
            return TRACE_MISS, x1, xh, d1, dh
        sq = math.sqrt(disc)
        t_near = (-B - sq) / (2.0 * A)
        t_far = (-B + sq) / (2.0 * A)
        t = -1.0
        if t_near > _EPS and _on_face(x1 + t_near * d1, c, ra):
            t = t_near
        elif t_far > _EPS and _on_face(x1 + t_far * d1, c, ra):
            t = t_far
        if t < 0.0:
            return TRACE_MISS, x1, xh, d1, dh

        q1 = x1 + t * d1
        qh = xh + t * dh

        # surface normal, oriented against the incoming ray
        g1 = (q1 - c) / (a * a)
        gh = qh / (b * b)
        gn = math.sqrt(g1 * g1 + gh * gh)
        n1 = g1 / gn
        nh = gh / gn
        cos_i = -(n1 * d1 + nh * dh)
        if cos_i < 0.0:
            n1 = -n1
            nh = -nh
            cos_i = -cos_i

        eta = n_prev / n_next
        k = 1.0 - eta * eta * (1.0 - cos_i * cos_i)
        if k < 0.0:
            return TRACE_TIR, q1, qh, d1, dh
        f = eta * cos_i - math.sqrt(k)
        d1 = eta * d1 + f * n1
        dh = eta * dh + f * nh
        dn = math.sqrt(d1 * d1 + dh * dh)
        d1 /= dn
        dh /= dn

        x1 = q1
        xh = qh
        n_prev = n_next

    return TRACE_OK, x1, xh, d1, dh


@njit(cache=True, nogil=True)
def _camera_miss_sq(theta, p1, h, cam1, camh, system):
    """Squared perpendicular distance between the exit ray and the camera point."""
    status, q1, qh, d1, dh = _trace_plane(p1, h, theta, system)
    if status != TRACE_OK:
        return np.inf
    w1 = cam1 - q1
    wh = camh - qh
    if w1 * d1 + wh * dh <= 0.0:
        return np.inf
    cross = w1 * dh - wh * d1
    return cross * cross


def _search_exit_angle(p1: float, h: float, cam1: float, camh: float,
                       system: np.ndarray, max_iterations: int) -> tuple[float, float]:
    res = minimize(
        lambda x: _camera_miss_sq(float(x[0]), p1, h, cam1, camh, system),
        x0=np.zeros(1),
        method="Nelder-Mead",
        options={"maxiter": int(max_iterations), "xatol": 1e-10, "fatol": 1e-14},
    )
    return float(res.x[0]), float(res.fun)


def trace_virtual_image(eye_point: np.ndarray,
                        camera_point: np.ndarray,
                        optical_system: OpticalSystem,
                        max_iterations: int = 200) -> np.ndarray:
    """
    eye_point and camera_point are (p1, p2, p3) in the unrotated eye frame.
    Returns the virtual image point at the depth of eye_point.
    Raises RefractionError when no ray from the point reaches the camera.
    """
    P = np.asarray(eye_point, dtype=float).reshape(3)
    C = np.asarray(camera_point, dtype=float).reshape(3)
    virtual = P.copy()

    for plane, k, system in (("p1p2", 1, optical_system.p1p2), ("p1p3", 2, optical_system.p1p3)):
        theta, miss = _search_exit_angle(P[0], P[k], C[0], C[k], system, max_iterations)
        if not np.isfinite(miss):
            raise RefractionError("no ray reaches the camera", plane)
        status, q1, qh, d1, dh = _trace_plane(P[0], P[k], theta, system)
        if status == TRACE_TIR:
            raise RefractionError("total internal reflection", plane)
        if status == TRACE_MISS:
            raise RefractionError("ray misses a refracting surface", plane)
        virtual[k] = qh + (P[0] - q1) * dh / d1

    return virtual


def trace_exit_ray(p1: float, h: float, theta: float, system: np.ndarray):
    """Python entry to the plane trace; returns (status, point, direction)."""
    status, q1, qh, d1, dh = _trace_plane(float(p1), float(h), float(theta),
                                          np.ascontiguousarray(system, dtype=float))
    return int(status), np.array([q1, qh]), np.array([d1, dh])
