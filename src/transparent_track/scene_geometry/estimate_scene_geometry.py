# scene_geometry/estimate_scene_geometry.py
"""
Calibrate the camera-eye geometry from a set of observed pupil ellipses.

Scene parameters, in order:
    camera torsion (deg), camera x, y, depth (mm),
    joint eye-rotation scalar, differential eye-rotation scalar.

For a candidate parameter vector every observed ellipse is sampled into boundary
points and the best eye pose for those points is searched. The objective is the
weighted RMS of the per-ellipse pose-fit errors. Parameters with lb == ub stay
fixed; the others are searched with bounded Nelder-Mead.
"""
from __future__ import annotations
from dataclasses import dataclass, replace
import numpy as np
from scipy.optimize import minimize

from transparent_track.errors import ConfigurationError
from transparent_track.fitting.eye_pose_fitter import (
    DEFAULT_EYE_POSE_LB, DEFAULT_EYE_POSE_UB, eye_pose_ellipse_fit,
)
from transparent_track.geometry.ellipse import ellipse_perimeter_points
from transparent_track.logging_utils.logging_setup import get_logger
from transparent_track.scene_geometry.scene_geometry import SceneGeometry

log = get_logger(__name__)

SCENE_PARAM_LABELS = ("camera torsion", "camera x", "camera y", "camera depth",
                      "joint rotation scalar", "differential rotation scalar")
SCENE_PARAM_UNITS = ("deg", "mm", "mm", "mm", "", "")


def default_scene_param_bounds(depth_mean: float, depth_sd: float) -> tuple[np.ndarray, np.ndarray]:
    """Search box around a depth estimate, e.g. from depth_from_iris_diameter."""
    lb = np.array([-5.0, -5.0, -5.0, depth_mean - 2.0 * depth_sd, 0.75, 0.9])
    ub = np.array([5.0, 5.0, 5.0, depth_mean + 2.0 * depth_sd, 1.25, 1.1])
    return lb, ub


def scene_params_of(scene_geometry: SceneGeometry) -> np.ndarray:
    """Parameters that reproduce scene_geometry when applied to itself."""
    cam = scene_geometry.camera
    return np.array([cam.rotation_z, *cam.translation, 1.0, 1.0])


def apply_scene_params(base: SceneGeometry, params) -> SceneGeometry:
    """
    Copy of base with the camera torsion and position replaced and the rotation
    centers scaled: azimuthal by joint * differential, elevational by
    joint / differential.
    """
    p = np.asarray(params, dtype=float).reshape(6)
    joint, diff = p[4], p[5]
    camera = replace(base.camera, rotation_z=p[0], translation=p[1:4])
    eye = base.eye.with_rotation_centers(base.eye.rotation_center_azi * joint * diff,
                                         base.eye.rotation_center_ele * joint / diff)
    return replace(base, camera=camera, eye=eye)


def _validate_scene_bounds(lb: np.ndarray, ub: np.ndarray) -> None:
    if lb.shape != (6,) or ub.shape != (6,):
        raise ConfigurationError("scene parameter bounds must have 6 entries")
    if np.any(~np.isfinite(lb)) or np.any(~np.isfinite(ub)) or np.any(lb > ub):
        raise ConfigurationError(f"scene parameter bounds must be finite with lb <= ub: {lb}, {ub}")
    if lb[4] <= 0 or lb[5] <= 0:
        raise ConfigurationError("rotation scalars must be bounded away from zero")


@dataclass
class SceneGeometryEstimate:
    scene_geometry: SceneGeometry
    scene_params: np.ndarray
    rmse: float
    eye_poses: np.ndarray
    ellipse_rmse: np.ndarray
    n_evaluations: int = 0


class _SceneObjective:
    def __init__(self, base, ellipses, weights, eye_pose_lb, eye_pose_ub,
                 n_perimeter_points, ray_trace):
        self.base = base
        self.points = [ellipse_perimeter_points(e, n_perimeter_points) for e in ellipses]
        self.weights = weights
        self.eye_pose_lb = eye_pose_lb
        self.eye_pose_ub = eye_pose_ub
        self.ray_trace = ray_trace

    def fit_poses(self, params):
        sg = apply_scene_params(self.base, params)
        fits = [eye_pose_ellipse_fit(pts[:, 0], pts[:, 1], sg, lb=self.eye_pose_lb, ub=self.eye_pose_ub,
                                     max_repeat_searches=0, ray_trace=self.ray_trace)
                for pts in self.points]
        return sg, fits

    def __call__(self, params) -> float:
        _, fits = self.fit_poses(params)
        err = np.array([f.rmse for f in fits])
        if not np.all(np.isfinite(err)):
            return 1e6
        return float(np.sqrt(np.sum(self.weights * err ** 2) / np.sum(self.weights)))


def estimate_scene_geometry(ellipses,
                            scene_geometry: SceneGeometry,
                            lb,
                            ub,
                            x0=None,
                            ellipse_rmse=None,
                            eye_pose_lb=DEFAULT_EYE_POSE_LB,
                            eye_pose_ub=DEFAULT_EYE_POSE_UB,
                            n_perimeter_points: int = 8,
                            ray_trace: bool = True,
                            max_evaluations: int = 500) -> SceneGeometryEstimate:
    """
    ellipses: (N, 5) transparent ellipses; rows with NaN are skipped.
    ellipse_rmse: optional per-ellipse fit errors; ellipses are weighted by 1/rmse.
    x0 defaults to the parameters of scene_geometry, clipped into the bounds.
    """
    E = np.atleast_2d(np.asarray(ellipses, dtype=float))
    lb = np.asarray(lb, dtype=float)
    ub = np.asarray(ub, dtype=float)
    _validate_scene_bounds(lb, ub)

    usable = np.all(np.isfinite(E), axis=1)
    if np.count_nonzero(usable) < 3:
        raise ConfigurationError(f"need at least 3 valid ellipses to estimate scene geometry, "
                                 f"got {np.count_nonzero(usable)}")
    weights = np.ones(E.shape[0])
    if ellipse_rmse is not None:
        r = np.asarray(ellipse_rmse, dtype=float)
        with np.errstate(divide="ignore"):
            weights = np.where(np.isfinite(r) & (r > 0), 1.0 / r, 1.0)
    E, weights = E[usable], weights[usable]

    start = scene_params_of(scene_geometry) if x0 is None else np.asarray(x0, dtype=float).reshape(6)
    start = np.clip(start, lb, ub)

    objective = _SceneObjective(scene_geometry, E, weights, eye_pose_lb, eye_pose_ub, n_perimeter_points, ray_trace)
    free = ub > lb
    params = start.copy()
    n_eval = 0
    if np.any(free):
        def fun(q):
            p = start.copy()
            p[free] = q
            return objective(p)

        res = minimize(fun, start[free], method="Nelder-Mead", bounds=list(zip(lb[free], ub[free])),
                       options={"maxfev": max_evaluations, "xatol": 1e-3, "fatol": 1e-6})
        params[free] = res.x
        n_eval = int(res.nfev)

    sg, fits = objective.fit_poses(params)
    err = np.array([f.rmse for f in fits])
    rmse = float(np.sqrt(np.sum(weights * err ** 2) / np.sum(weights)))
    log.info("Scene geometry estimate %s, rmse %.4f px after %d evaluations",
             np.round(params, 4).tolist(), rmse, n_eval)
    return SceneGeometryEstimate(
        scene_geometry=sg,
        scene_params=params,
        rmse=rmse,
        eye_poses=np.array([f.eye_pose for f in fits]),
        ellipse_rmse=err,
        n_evaluations=n_eval,
    )
