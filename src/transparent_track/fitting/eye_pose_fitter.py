# fitting/eye_pose_fitter.py
"""
Eye pose from pupil boundary points.

Each search is a bounded least-squares problem over the free pose parameters
(torsion is pinned by equal bounds by default). The residual of an observed
point is its radial distance from the pupil ellipse the forward model predicts
for the trial pose. Searches that end above the repeat threshold are restarted
from a fixed sequence of alternative seeds until the retry budget runs out; the
lowest-error result wins either way.
"""
from __future__ import annotations
from dataclasses import dataclass
import numpy as np
from scipy.optimize import least_squares

from transparent_track.config.fit_config import validate_eye_pose_bounds
from transparent_track.errors import FitStatus
from transparent_track.fitting.ellipse_fitter import MIN_POINTS, clean_points
from transparent_track.geometry.ellipse import ellipse_radial_distance, fit_ellipse_direct
from transparent_track.logging_utils.logging_setup import get_logger
from transparent_track.projection.forward_projector import project_pupil
from transparent_track.projection.pupil_projection_inv import center_of_projection, pupil_projection_inv
from transparent_track.scene_geometry.scene_geometry import SceneGeometry

log = get_logger(__name__)

DEFAULT_EYE_POSE_LB = (-35.0, -25.0, 0.0, 0.25)
DEFAULT_EYE_POSE_UB = (35.0, 25.0, 0.0, 4.0)

# residual (pixels) for trial poses whose pupil cannot be projected; it grows
# with the bound-scaled distance from the last projectable pose
_UNPROJECTABLE_RESIDUAL = 1e3


@dataclass
class EyePoseFitResult:
    eye_pose: np.ndarray
    rmse: float
    status: FitStatus = FitStatus.SUCCESS
    n_searches: int = 0
    bad_frame: bool = False

    @property
    def is_success(self) -> bool:
        return self.status is FitStatus.SUCCESS


def failed_eye_pose_fit(status: FitStatus) -> EyePoseFitResult:
    return EyePoseFitResult(eye_pose=np.full(4, np.nan), rmse=np.inf, status=status)


@dataclass
class _PoseProblem:
    """Everything one pose search needs; picklable for process pools."""
    x: np.ndarray
    y: np.ndarray
    scene_geometry: SceneGeometry
    lb: np.ndarray
    ub: np.ndarray
    ray_trace: bool
    n_pupil_perim_points: int
    ray_trace_max_iterations: int
    max_nfev: int
    anchor: np.ndarray | None = None

    def predicted_ellipse(self, pose: np.ndarray) -> np.ndarray:
        return project_pupil(pose, self.scene_geometry,
                             n_pupil_perim_points=self.n_pupil_perim_points,
                             ray_trace=self.ray_trace,
                             ray_trace_max_iterations=self.ray_trace_max_iterations).ellipse

    def residuals(self, pose: np.ndarray) -> np.ndarray:
        ellipse = self.predicted_ellipse(pose)
        if np.all(np.isfinite(ellipse)):
            res = ellipse_radial_distance(ellipse, self.x, self.y)
            if np.all(np.isfinite(res)):
                self.anchor = np.array(pose, dtype=float)
                return res
        return np.full(self.x.size, self.unprojectable_residual(pose))

    def unprojectable_residual(self, pose: np.ndarray) -> float:
        if self.anchor is None:
            return _UNPROJECTABLE_RESIDUAL
        span = np.where(self.ub > self.lb, self.ub - self.lb, 1.0)
        step = np.linalg.norm((np.asarray(pose, dtype=float) - self.anchor) / span)
        return _UNPROJECTABLE_RESIDUAL * (1.0 + step)

    def search(self, seed: np.ndarray) -> tuple[np.ndarray, float]:
        seed = np.clip(seed, self.lb, self.ub)
        self.anchor = None
        free = self.ub > self.lb
        if not np.any(free):
            res = self.residuals(seed)
            return seed, float(np.sqrt(np.mean(res ** 2)))

        def fun(q):
            pose = seed.copy()
            pose[free] = q
            return self.residuals(pose)

        sol = least_squares(fun, seed[free], bounds=(self.lb[free], self.ub[free]),
                            method="trf", x_scale=(self.ub - self.lb)[free], diff_step=1e-4,
                            ftol=1e-10, xtol=1e-10, gtol=1e-10, max_nfev=self.max_nfev)
        pose = seed.copy()
        pose[free] = sol.x
        return pose, float(np.sqrt(np.mean(sol.fun ** 2)))

    def seeds(self, x0: np.ndarray | None):
        """Primary seed followed by the alternatives tried on retry."""
        primary = self.guess() if x0 is None else np.asarray(x0, dtype=float)
        yield primary
        yield (self.lb + self.ub) / 2.0
        span = self.ub - self.lb
        for sa, se in ((1, 1), (-1, -1), (1, -1), (-1, 1)):
            alt = primary.copy()
            alt[0] += sa * span[0] / 4.0
            alt[1] += se * span[1] / 4.0
            yield alt

    def guess(self) -> np.ndarray:
        """Seed from the closed-form inverse of the observed ellipse."""
        midpoint = (self.lb + self.ub) / 2.0
        observed = fit_ellipse_direct(self.x, self.y)
        if observed is None:
            return midpoint
        azi, ele, _ = pupil_projection_inv(observed, center_of_projection(self.scene_geometry))
        if not (np.isfinite(azi) and np.isfinite(ele)):
            return midpoint
        pose = np.clip([azi, ele, midpoint[2], 1.0], self.lb, self.ub)
        pose[3] = 1.0
        unit = project_pupil(pose, self.scene_geometry, n_pupil_perim_points=self.n_pupil_perim_points,
                             ray_trace=False).ellipse
        if np.isfinite(unit[2]) and unit[2] > 0:
            pose[3] = np.sqrt(observed[2] / unit[2])
        return np.clip(pose, self.lb, self.ub)


def eye_pose_ellipse_fit(x, y,
                         scene_geometry: SceneGeometry,
                         x0=None,
                         lb=DEFAULT_EYE_POSE_LB,
                         ub=DEFAULT_EYE_POSE_UB,
                         repeat_search_threshold: float = 2.0,
                         max_repeat_searches: int = 3,
                         ray_trace: bool = True,
                         n_pupil_perim_points: int = 5,
                         ray_trace_max_iterations: int = 200,
                         max_nfev: int = 400) -> EyePoseFitResult:
    """
    Search for the eye pose whose projected pupil best matches the points.

    The threshold only stops the retry loop early and sets bad_frame; the best
    pose found is always returned. Fewer than 5 usable points give a NaN pose
    with infinite error and status INSUFFICIENT_DATA.
    """
    lb = np.asarray(lb, dtype=float)
    ub = np.asarray(ub, dtype=float)
    validate_eye_pose_bounds(lb, ub)
    x, y = clean_points(x, y)
    if x.size < MIN_POINTS:
        return failed_eye_pose_fit(FitStatus.INSUFFICIENT_DATA)

    problem = _PoseProblem(x=x, y=y, scene_geometry=scene_geometry, lb=lb, ub=ub,
                           ray_trace=ray_trace, n_pupil_perim_points=n_pupil_perim_points,
                           ray_trace_max_iterations=ray_trace_max_iterations, max_nfev=max_nfev)

    best_pose, best_rmse = np.full(4, np.nan), np.inf
    n_searches = 0
    for seed in problem.seeds(x0):
        if n_searches > max_repeat_searches:
            break
        pose, rmse = problem.search(seed)
        n_searches += 1
        if rmse < best_rmse:
            best_pose, best_rmse = pose, rmse
        if best_rmse <= repeat_search_threshold:
            break
        log.debug("Pose search %d ended at rmse %.3f px; retrying", n_searches, rmse)

    if not np.all(np.isfinite(best_pose)):
        return failed_eye_pose_fit(FitStatus.DEGENERATE_GEOMETRY)
    return EyePoseFitResult(eye_pose=best_pose, rmse=best_rmse, n_searches=n_searches,
                            bad_frame=bool(best_rmse > repeat_search_threshold))
