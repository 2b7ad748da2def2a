from __future__ import annotations
import numpy as np

from transparent_track.eye_model.eye_rotation import head_to_scene_world
from transparent_track.scene_geometry.scene_geometry import SceneGeometry


def pupil_projection_inv(ellipse, center_of_projection) -> tuple[float, float, float]:
    """
    Closed-form eye rotation from a pupil ellipse, assuming a circular pupil seen
    under orthographic projection.

    The ellipse minor/major ratio gives the tilt of the pupil plane and theta
    splits it into azimuth and elevation. Signs come from the position of the
    ellipse center relative to center_of_projection (the image of the center of
    rotation). Returns (azimuth deg, elevation deg, pupil radius in pixels).
    """
    cx, cy, area, ecc, theta = (float(v) for v in ellipse)
    if not np.all(np.isfinite([cx, cy, ecc, theta])):
        return np.nan, np.nan, np.nan
    k = np.sqrt(1.0 - ecc * ecc)
    sin2 = np.sin(theta) ** 2
    cos2 = np.cos(theta) ** 2

    azimuth = np.degrees(np.arcsin(np.sqrt(sin2 * (1.0 - k * k))))
    elevation = np.degrees(np.arcsin(np.sqrt(np.clip(cos2 * (1.0 - k * k) / (1.0 - sin2 * (1.0 - k * k)), 0.0, 1.0))))
    azimuth *= np.sign(cx - center_of_projection[0])
    elevation *= np.sign(cy - center_of_projection[1])

    radius = np.sqrt(area / (np.pi * k)) if np.isfinite(area) else np.nan
    return float(azimuth), float(elevation), float(radius)


def center_of_projection(scene_geometry: SceneGeometry) -> np.ndarray:
    """Image location of the azimuthal rotation center."""
    center = head_to_scene_world(scene_geometry.eye.rotation_center_azi)
    return scene_geometry.camera.project(center)[0]
