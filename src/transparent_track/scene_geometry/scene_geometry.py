# scene_geometry/scene_geometry.py
from __future__ import annotations
import json
import os
import tempfile
from dataclasses import dataclass, replace
from os import PathLike
from typing import Any, Dict, Optional, Union
import numpy as np

from transparent_track.camera.camera_model import (
    CameraModel, DEFAULT_INTRINSIC_MATRIX, DEFAULT_SENSOR_RESOLUTION,
)
from transparent_track.errors import ConfigurationError
from transparent_track.eye_model.eye_anatomy import EyeAnatomy, build_eye_anatomy, refractive_index
from transparent_track.eye_model.optical_system import OpticalSystem, assemble_optical_system
from transparent_track.logging_utils.logging_setup import get_logger

log = get_logger(__name__)

DEFAULT_CAMERA_TRANSLATION = (0.0, 0.0, 120.0)
DEFAULT_CONSTRAINT_TOLERANCE = 0.02


@dataclass(frozen=True)
class SceneGeometry:
    """
    Session-level description of the eye, the camera and the optics between them.
    optical_system is None when refraction is not modeled.
    """
    eye: EyeAnatomy
    camera: CameraModel
    constraint_tolerance: float = DEFAULT_CONSTRAINT_TOLERANCE
    optical_system: Optional[OpticalSystem] = None

    def __post_init__(self):
        object.__setattr__(self, "constraint_tolerance", float(self.constraint_tolerance))

    @property
    def refraction_enabled(self) -> bool:
        return self.optical_system is not None

    def without_refraction(self) -> "SceneGeometry":
        return replace(self, optical_system=None)

    def with_camera(self, **changes) -> "SceneGeometry":
        return replace(self, camera=replace(self.camera, **changes))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "eye": self.eye.to_dict(),
            "camera": self.camera.to_dict(),
            "constraint_tolerance": self.constraint_tolerance,
            "optical_system": None if self.optical_system is None else self.optical_system.to_dict(),
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "SceneGeometry":
        optics = d.get("optical_system")
        return cls(
            eye=EyeAnatomy.from_dict(d["eye"]),
            camera=CameraModel.from_dict(d["camera"]),
            constraint_tolerance=d.get("constraint_tolerance", DEFAULT_CONSTRAINT_TOLERANCE),
            optical_system=None if optics is None else OpticalSystem.from_dict(optics),
        )

    def save_json(self, path: Union[str, PathLike]) -> None:
        """Atomic write; NaN entries are kept as JSON NaN literals."""
        path = os.fspath(path)
        directory = os.path.dirname(os.path.abspath(path))
        fd, tmp = tempfile.mkstemp(prefix=".scene_", suffix=".json.tmp", dir=directory)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(self.to_dict(), f, indent=2)
            os.replace(tmp, path)
        except BaseException:
            if os.path.exists(tmp):
                os.remove(tmp)
            raise

    @classmethod
    def load_json(cls, path: Union[str, PathLike]) -> "SceneGeometry":
        with open(path, "r", encoding="utf-8") as f:
            return cls.from_dict(json.load(f))


def _checked_array(name: str, value, shape) -> np.ndarray:
    try:
        arr = np.asarray(value, dtype=float).reshape(shape)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"{name} must have shape {shape}: {e}") from e
    if not np.all(np.isfinite(arr)):
        raise ConfigurationError(f"{name} must be finite, got {arr.tolist()}")
    return arr


def create_scene_geometry(intrinsic_matrix=DEFAULT_INTRINSIC_MATRIX,
                          sensor_resolution=DEFAULT_SENSOR_RESOLUTION,
                          radial_distortion=(0.0, 0.0),
                          translation=DEFAULT_CAMERA_TRANSLATION,
                          rotation_z: float = 0.0,
                          constraint_tolerance: float = DEFAULT_CONSTRAINT_TOLERANCE,
                          axial_length: float | None = None,
                          spherical_ametropia: float = 0.0,
                          laterality: str = "right",
                          spectral_domain: str = "nir",
                          corneal_toricity: float = 0.0,
                          medium: str = "air",
                          refraction: bool = True) -> SceneGeometry:
    """Build a SceneGeometry from camera and biometric parameters; raises ConfigurationError."""
    K = _checked_array("intrinsic_matrix", intrinsic_matrix, (3, 3))
    if not (K[0, 0] > 0 and K[1, 1] > 0):
        raise ConfigurationError(f"focal lengths must be positive, got fx={K[0, 0]}, fy={K[1, 1]}")
    dist = _checked_array("radial_distortion", radial_distortion, (2,))
    t = _checked_array("translation", translation, (3,))
    res = _checked_array("sensor_resolution", sensor_resolution, (2,))
    if np.any(res <= 0):
        raise ConfigurationError(f"sensor resolution must be positive, got {res.tolist()}")
    if not (np.isfinite(rotation_z) and np.isfinite(constraint_tolerance) and constraint_tolerance >= 0):
        raise ConfigurationError("rotation_z and constraint_tolerance must be finite; tolerance >= 0")
    # fail on unknown medium even without refraction
    refractive_index(medium, spectral_domain)

    eye = build_eye_anatomy(axial_length, spherical_ametropia, laterality, spectral_domain,
                            corneal_toricity)
    camera = CameraModel(
        intrinsic_matrix=K,
        radial_distortion=dist,
        translation=t,
        rotation_z=rotation_z,
        sensor_resolution=(int(res[0]), int(res[1])),
    )
    optics = assemble_optical_system(eye, medium) if refraction else None
    log.debug("Created scene geometry: camera at %s mm, %s eye, refraction=%s",
              t.tolist(), eye.laterality, refraction)
    return SceneGeometry(eye=eye, camera=camera, constraint_tolerance=constraint_tolerance,
                         optical_system=optics)
