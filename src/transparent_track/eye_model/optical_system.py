from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Dict
import numpy as np

from transparent_track.eye_model.eye_anatomy import EyeAnatomy, refractive_index

# Columns of an optical system row
CENTER, RADIUS_AXIAL, RADIUS_TRANSVERSE, INDEX = range(4)


def _rows(a) -> np.ndarray:
    x = np.array(a, dtype=float).reshape(-1, 4)
    x.setflags(write=False)
    return x


@dataclass(frozen=True)
class OpticalSystem:
    """
    Refracting surfaces ordered from the inside of the eye outward, one table per
    principal plane. Row 0 holds only the index of the medium the rays start in;
    each following row is [center p1, axial semi-axis, transverse semi-axis,
    index of the medium beyond the surface]. A negative semi-axis marks a surface
    whose convex side faces +p1 (towards the camera).
    """
    p1p2: np.ndarray
    p1p3: np.ndarray
    medium: str = "air"

    def __post_init__(self):
        object.__setattr__(self, "p1p2", _rows(self.p1p2))
        object.__setattr__(self, "p1p3", _rows(self.p1p3))
        if self.p1p2.shape != self.p1p3.shape:
            raise ValueError("p1p2 and p1p3 systems must have the same number of surfaces")

    @property
    def n_surfaces(self) -> int:
        return self.p1p2.shape[0] - 1

    def to_dict(self) -> Dict[str, Any]:
        return {"p1p2": self.p1p2.tolist(), "p1p3": self.p1p3.tolist(), "medium": self.medium}

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "OpticalSystem":
        return cls(p1p2=d["p1p2"], p1p3=d["p1p3"], medium=d.get("medium", "air"))


def assemble_optical_system(eye: EyeAnatomy, medium: str = "air") -> OpticalSystem:
    """Back and front corneal surfaces, from the aqueous humor out to the medium around the eye."""
    n_medium = refractive_index(medium, eye.spectral_domain)
    back_c = eye.cornea_back_center[0]
    front_c = eye.cornea_front_center[0]
    back, front = eye.cornea_back_radii, eye.cornea_front_radii

    def plane(k: int) -> np.ndarray:
        return np.array([
            [np.nan, np.nan, np.nan, eye.index_aqueous],
            [back_c, -back[0], -back[k], eye.index_cornea],
            [front_c, -front[0], -front[k], n_medium],
        ])

    return OpticalSystem(p1p2=plane(1), p1p3=plane(2), medium=medium)
