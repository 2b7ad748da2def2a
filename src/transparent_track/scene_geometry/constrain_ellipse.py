from __future__ import annotations
import numpy as np
from scipy.optimize import least_squares

from transparent_track.projection.forward_projector import project_pupil
from transparent_track.projection.pupil_projection_inv import center_of_projection
from transparent_track.scene_geometry.scene_geometry import SceneGeometry


def constrain_ellipse_by_scene_geometry(ellipse_center,
                                        scene_geometry: SceneGeometry,
                                        pupil_radius: float = 2.0,
                                        ray_trace: bool = False,
                                        angle_limits=(35.0, 25.0)) -> tuple[float, float]:
    """
    Eccentricity and theta of the pupil ellipse the scene geometry predicts when
    the pupil is centered at `ellipse_center` (image pixels).

    Azimuth and elevation are searched so that the projected ellipse center lands
    on the requested location. The result can be pinned in the ellipse fitter via
    fixed_params = [nan, nan, nan, eccentricity, theta].
    """
    target = np.asarray(ellipse_center, dtype=float).reshape(2)
    lim = np.asarray(angle_limits, dtype=float)

    def ellipse_at(angles):
        return project_pupil([angles[0], angles[1], 0.0, pupil_radius], scene_geometry,
                             ray_trace=ray_trace).ellipse

    def residuals(angles):
        e = ellipse_at(angles)
        if not np.all(np.isfinite(e)):
            return np.full(2, 1e3)
        return e[:2] - target

    # pixels per degree from the camera distance gives the starting angles
    cop = center_of_projection(scene_geometry)
    f = scene_geometry.camera.intrinsic_matrix[0, 0]
    eye = scene_geometry.eye
    depth = scene_geometry.camera.translation[2] - eye.pupil_center[0]
    lever = eye.pupil_center[0] - eye.rotation_center_azi[0]
    seed = np.degrees(np.arcsin(np.clip((target - cop) * depth / (f * lever), -0.99, 0.99)))
    seed = np.clip(seed, -lim, lim)

    sol = least_squares(residuals, seed, bounds=(-lim, lim), method="trf", diff_step=1e-4,
                        xtol=1e-10, ftol=1e-10, gtol=1e-10)
    e = ellipse_at(sol.x)
    return float(e[3]), float(e[4])
