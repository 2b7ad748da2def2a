from __future__ import annotations
from dataclasses import replace
import numpy as np
from scipy.optimize import minimize_scalar

from transparent_track.errors import ConfigurationError
from transparent_track.logging_utils.logging_setup import get_logger
from transparent_track.projection.forward_projector import IRIS_PERIMETER, project_pupil
from transparent_track.scene_geometry.scene_geometry import SceneGeometry

log = get_logger(__name__)

# Unrefracted iris radius (mm) that reproduces the population horizontal
# visible iris diameter through the model cornea
TRUE_IRIS_RADIUS_MEAN = 5.54
TRUE_IRIS_RADIUS_SD = 0.30

N_IRIS_PERIM_POINTS = 20


def predicted_iris_diameter(scene_geometry: SceneGeometry, iris_radius: float | None = None,
                            ray_trace: bool = True) -> float:
    """Horizontal extent (pixels) of the iris at eye pose [0, 0, 0, 1]."""
    sg = scene_geometry
    if iris_radius is not None:
        sg = replace(sg, eye=sg.eye.with_iris_radius(iris_radius))
    proj = project_pupil([0.0, 0.0, 0.0, 1.0], sg, full_eye_model=True,
                         n_iris_perim_points=N_IRIS_PERIM_POINTS, n_mesh_points=4, ray_trace=ray_trace)
    xs = proj.image_points_of(IRIS_PERIMETER)[:, 0]
    if not np.any(np.isfinite(xs)):
        return np.nan
    return float(np.nanmax(xs) - np.nanmin(xs))


def depth_from_iris_diameter(scene_geometry: SceneGeometry,
                             observed_iris_diam_pixels: float,
                             depth_bounds: tuple[float, float] = (10.0, 1000.0),
                             ray_trace: bool = True) -> tuple[float, float]:
    """
    Camera distance from the corneal apex that makes the model iris appear with
    the observed diameter, for the mean and the mean + 1 SD iris radius.
    Returns (depth_mean, depth_sd) in mm.
    """
    if not (np.isfinite(observed_iris_diam_pixels) and observed_iris_diam_pixels > 0):
        raise ConfigurationError(f"observed iris diameter must be positive, got {observed_iris_diam_pixels}")

    depths = []
    for radius in (TRUE_IRIS_RADIUS_MEAN, TRUE_IRIS_RADIUS_MEAN + TRUE_IRIS_RADIUS_SD):
        eye = scene_geometry.eye.with_iris_radius(radius)

        def mismatch(depth):
            t = scene_geometry.camera.translation.copy()
            t[2] = depth
            sg = replace(scene_geometry, eye=eye, camera=replace(scene_geometry.camera, translation=t))
            diam = predicted_iris_diameter(sg, ray_trace=ray_trace)
            return 1e12 if not np.isfinite(diam) else (diam - observed_iris_diam_pixels) ** 2

        res = minimize_scalar(mismatch, bounds=depth_bounds, method="bounded", options={"xatol": 1e-4})
        depths.append(float(res.x))
        log.debug("Iris radius %.2f mm -> camera depth %.2f mm", radius, res.x)

    return depths[0], abs(depths[1] - depths[0])
