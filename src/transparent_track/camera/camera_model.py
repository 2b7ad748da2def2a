from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Dict, Tuple
import numpy as np

# Image coordinates use the intrinsic convention: the center of the first pixel
# sits at (1, 1) and pixel centers fall on integer coordinates. Zero-based array
# indices differ by exactly this offset; conversions happen only at the image boundary.
INTRINSIC_PIXEL_ORIGIN = 1.0

DEFAULT_INTRINSIC_MATRIX = ((2600.0, 0.0, 320.0), (0.0, 2600.0, 240.0), (0.0, 0.0, 1.0))
DEFAULT_SENSOR_RESOLUTION = (640, 480)


def intrinsic_to_array_coordinates(points: np.ndarray) -> np.ndarray:
    return np.asarray(points, dtype=float) - INTRINSIC_PIXEL_ORIGIN


def array_to_intrinsic_coordinates(points: np.ndarray) -> np.ndarray:
    return np.asarray(points, dtype=float) + INTRINSIC_PIXEL_ORIGIN


def _np(a, shape=None) -> np.ndarray:
    x = np.array(a, dtype=float)
    if shape:
        x = x.reshape(shape)
    x.setflags(write=False)
    return x


@dataclass(frozen=True)
class CameraModel:
    """
    Pinhole camera with two-term radial distortion.

    Scene world frame: origin at the corneal apex of the eye in primary position,
    X to the right of the image, Y down the image, Z along the optical axis of the
    eye towards the camera. `translation` is the position of the camera in that
    frame (mm); the camera looks down -Z. `rotation_z` (deg) rolls the camera
    about its own optical axis.
    """
    intrinsic_matrix: np.ndarray
    radial_distortion: np.ndarray
    translation: np.ndarray
    rotation_z: float = 0.0
    sensor_resolution: Tuple[int, int] = DEFAULT_SENSOR_RESOLUTION

    def __post_init__(self):
        object.__setattr__(self, "intrinsic_matrix", _np(self.intrinsic_matrix, (3, 3)))
        object.__setattr__(self, "radial_distortion", _np(self.radial_distortion, (2,)))
        object.__setattr__(self, "translation", _np(self.translation, (3,)))
        object.__setattr__(self, "rotation_z", float(self.rotation_z))
        object.__setattr__(self, "sensor_resolution",
                           (int(self.sensor_resolution[0]), int(self.sensor_resolution[1])))

    @property
    def principal_point(self) -> np.ndarray:
        return self.intrinsic_matrix[:2, 2].copy()

    @property
    def position_head_world(self) -> np.ndarray:
        """Camera position in head/eye coordinates (p1, p2, p3)."""
        tx, ty, tz = self.translation
        return np.array([tz, tx, -ty])

    def depth(self, points_scene_world: np.ndarray) -> np.ndarray:
        pts = np.atleast_2d(np.asarray(points_scene_world, dtype=float))
        return self.translation[2] - pts[:, 2]

    def project(self, points_scene_world: np.ndarray) -> np.ndarray:
        """
        (N,3) scene world points -> (N,2) intrinsic image coordinates.
        Points at or behind the camera come back as NaN.
        """
        pts = np.atleast_2d(np.asarray(points_scene_world, dtype=float))
        rel = pts - self.translation
        depth = -rel[:, 2]

        c = np.cos(np.deg2rad(self.rotation_z))
        s = np.sin(np.deg2rad(self.rotation_z))
        xc = c * rel[:, 0] - s * rel[:, 1]
        yc = s * rel[:, 0] + c * rel[:, 1]

        K = self.intrinsic_matrix
        with np.errstate(divide="ignore", invalid="ignore"):
            xn = xc / depth
            yn = yc / depth
            r2 = xn * xn + yn * yn
            k1, k2 = self.radial_distortion
            radial = 1.0 + k1 * r2 + k2 * r2 * r2
            xd = xn * radial
            yd = yn * radial
            image = np.column_stack([
                K[0, 0] * xd + K[0, 1] * yd + K[0, 2],
                K[1, 1] * yd + K[1, 2],
            ])

        bad = ~(depth > 0) | ~np.all(np.isfinite(image), axis=1)
        image[bad] = np.nan
        return image

    def to_dict(self) -> Dict[str, Any]:
        return {
            "intrinsic_matrix": self.intrinsic_matrix.tolist(),
            "radial_distortion": self.radial_distortion.tolist(),
            "translation": self.translation.tolist(),
            "rotation_z": self.rotation_z,
            "sensor_resolution": list(self.sensor_resolution),
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "CameraModel":
        return cls(
            intrinsic_matrix=d["intrinsic_matrix"],
            radial_distortion=d.get("radial_distortion", (0.0, 0.0)),
            translation=d["translation"],
            rotation_z=d.get("rotation_z", 0.0),
            sensor_resolution=tuple(d.get("sensor_resolution", DEFAULT_SENSOR_RESOLUTION)),
        )
