# eye_model/eye_anatomy.py
"""
Schematic eye in eye-world coordinates.

Axes: p1 runs along the optical axis (corneal apex at p1 = 0, the eye lies at
negative p1), p2 is horizontal (positive = nasal for a right eye), p3 is vertical
(positive = down). Lengths are in mm.
"""
from __future__ import annotations
from dataclasses import dataclass, replace
from typing import Any, Dict
import numpy as np

from transparent_track.errors import ConfigurationError, EyeModelError

# Emmetropic axial length and its change with spherical refractive error (D)
EMMETROPIC_AXIAL_LENGTH = 23.58
AXIAL_LENGTH_PER_DIOPTER = -0.299

CORNEA_FRONT_RADIUS = 7.77
CORNEA_FRONT_RADIUS_PER_DIOPTER = 0.022
CORNEA_FRONT_ASPHERICITY = -0.15
CORNEA_BACK_RADIUS = 6.4
CORNEA_BACK_ASPHERICITY = -0.275
CORNEA_THICKNESS = 0.55

PUPIL_DEPTH = 3.7
IRIS_DEPTH = 3.9
IRIS_RADIUS = 5.54
IRIS_TEMPORAL_SHIFT = 0.15

# Posterior chamber semi-axes (p1, p2, p3) of an emmetropic eye
POSTERIOR_CHAMBER_RADII = (10.148, 11.455, 11.365)

ROTATION_CENTER_AZI_DEPTH = 13.5
ROTATION_CENTER_ELE_DEPTH = 12.5

REFRACTIVE_INDICES = {
    "vis": {"cornea": 1.376, "aqueous": 1.3374, "vitreous": 1.336,
            "air": 1.0, "vacuum": 1.0, "water": 1.333},
    "nir": {"cornea": 1.3695, "aqueous": 1.3301, "vitreous": 1.3290,
            "air": 1.0, "vacuum": 1.0, "water": 1.3260},
}

LATERALITIES = ("right", "left")


def refractive_index(material: str, spectral_domain: str = "nir") -> float:
    domain = str(spectral_domain).lower()
    if domain not in REFRACTIVE_INDICES:
        raise ConfigurationError(
            f"unknown spectral domain '{spectral_domain}', expected one of {sorted(REFRACTIVE_INDICES)}")
    table = REFRACTIVE_INDICES[domain]
    if material not in table:
        raise ConfigurationError(f"no refractive index for '{material}', expected one of {sorted(table)}")
    return table[material]


def _vec3(a) -> np.ndarray:
    x = np.array(a, dtype=float).reshape(3)
    x.setflags(write=False)
    return x


def _conic_radii(radius: float, asphericity: float) -> tuple[float, float]:
    """Axial and transverse semi-axes of an ellipsoid with apical radius R and asphericity Q."""
    return radius / (1.0 + asphericity), radius / np.sqrt(1.0 + asphericity)


@dataclass(frozen=True)
class EyeAnatomy:
    laterality: str
    axial_length: float
    spherical_ametropia: float
    spectral_domain: str

    # ellipsoids: radii are (p1, p2, p3) semi-axes
    cornea_front_radii: np.ndarray
    cornea_front_center: np.ndarray
    cornea_back_radii: np.ndarray
    cornea_back_center: np.ndarray
    posterior_chamber_radii: np.ndarray
    posterior_chamber_center: np.ndarray

    pupil_center: np.ndarray
    iris_center: np.ndarray
    iris_radius: float

    rotation_center_azi: np.ndarray
    rotation_center_ele: np.ndarray

    index_cornea: float
    index_aqueous: float
    index_vitreous: float

    def __post_init__(self):
        for name in ("cornea_front_radii", "cornea_front_center", "cornea_back_radii",
                     "cornea_back_center", "posterior_chamber_radii", "posterior_chamber_center",
                     "pupil_center", "iris_center", "rotation_center_azi", "rotation_center_ele"):
            object.__setattr__(self, name, _vec3(getattr(self, name)))
        for name in ("axial_length", "spherical_ametropia", "iris_radius",
                     "index_cornea", "index_aqueous", "index_vitreous"):
            object.__setattr__(self, name, float(getattr(self, name)))
        object.__setattr__(self, "laterality", str(self.laterality))
        object.__setattr__(self, "spectral_domain", str(self.spectral_domain))
        _check_ordering(self)

    @property
    def cornea_thickness(self) -> float:
        return float(-self.cornea_back_center[0] - self.cornea_back_radii[0])

    @property
    def rotation_centers(self) -> tuple[np.ndarray, np.ndarray]:
        return self.rotation_center_azi, self.rotation_center_ele

    def with_iris_radius(self, radius: float) -> "EyeAnatomy":
        return replace(self, iris_radius=radius)

    def with_rotation_centers(self, azi: np.ndarray, ele: np.ndarray) -> "EyeAnatomy":
        return replace(self, rotation_center_azi=azi, rotation_center_ele=ele)

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {}
        for key, value in self.__dict__.items():
            d[key] = value.tolist() if isinstance(value, np.ndarray) else value
        return d

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "EyeAnatomy":
        return cls(**d)


def _check_ordering(eye: EyeAnatomy) -> None:
    """Depth ordering along p1, from the back of the eye to the corneal apex."""
    pc = eye.posterior_chamber_center[0]
    iris = eye.iris_center[0]
    pupil = eye.pupil_center[0]
    back_apex = eye.cornea_back_center[0] + eye.cornea_back_radii[0]
    front_apex = eye.cornea_front_center[0] + eye.cornea_front_radii[0]

    if not np.all(np.isfinite(np.concatenate([eye.posterior_chamber_center, eye.iris_center,
                                               eye.pupil_center, eye.cornea_back_center,
                                               eye.cornea_front_center]))):
        raise EyeModelError("eye model contains non-finite centers")
    if np.any(eye.posterior_chamber_radii <= 0) or np.any(eye.cornea_front_radii <= 0) \
            or np.any(eye.cornea_back_radii <= 0):
        raise EyeModelError("ellipsoid radii must be positive")
    if not pc < iris:
        raise EyeModelError(
            f"posterior chamber center (p1={pc:.3f}) must lie behind the iris plane (p1={iris:.3f})")
    if not pc < pupil:
        raise EyeModelError(
            f"posterior chamber center (p1={pc:.3f}) must lie behind the pupil plane (p1={pupil:.3f})")
    if not max(iris, pupil) < back_apex:
        raise EyeModelError(
            f"iris and pupil planes must lie behind the back corneal surface (apex p1={back_apex:.3f})")
    if not back_apex < front_apex:
        raise EyeModelError(
            f"back corneal apex (p1={back_apex:.3f}) must lie behind the front corneal apex (p1={front_apex:.3f})")
    if not abs(front_apex) < 1e-9:
        raise EyeModelError(f"front corneal apex must sit at the origin, got p1={front_apex:.3f}")
    if not iris < 0:
        raise EyeModelError(f"iris plane (p1={iris:.3f}) must lie behind the corneal apex")
    if eye.iris_radius < 0:
        raise EyeModelError("iris radius must be non-negative")


def build_eye_anatomy(axial_length: float | None = None,
                      spherical_ametropia: float = 0.0,
                      laterality: str = "right",
                      spectral_domain: str = "nir",
                      corneal_toricity: float = 0.0) -> EyeAnatomy:
    """
    Closed-form schematic eye for the given biometry.

    axial_length defaults to the value expected for the refractive error; when
    given, the posterior chamber and rotation centers scale with it. A left eye
    mirrors every horizontal (p2) offset of the right eye. corneal_toricity (mm)
    steepens the vertical meridian of the front cornea (with-the-rule astigmatism).
    """
    lat = str(laterality).lower()
    if lat not in LATERALITIES:
        raise ConfigurationError(f"laterality must be one of {LATERALITIES}, got '{laterality}'")
    sr = float(spherical_ametropia)
    expected_length = EMMETROPIC_AXIAL_LENGTH + AXIAL_LENGTH_PER_DIOPTER * sr
    length = expected_length if axial_length is None else float(axial_length)
    if not np.isfinite(length) or length <= 0:
        raise EyeModelError(f"axial length must be positive and finite, got {axial_length}")
    scale = length / EMMETROPIC_AXIAL_LENGTH
    nasal = 1.0 if lat == "right" else -1.0

    front_r = CORNEA_FRONT_RADIUS + CORNEA_FRONT_RADIUS_PER_DIOPTER * sr
    front_axial, front_h = _conic_radii(front_r, CORNEA_FRONT_ASPHERICITY)
    _, front_v = _conic_radii(front_r - corneal_toricity, CORNEA_FRONT_ASPHERICITY)
    back_axial, back_t = _conic_radii(CORNEA_BACK_RADIUS, CORNEA_BACK_ASPHERICITY)

    pc_radii = np.array(POSTERIOR_CHAMBER_RADII) * scale

    return EyeAnatomy(
        laterality=lat,
        axial_length=length,
        spherical_ametropia=sr,
        spectral_domain=str(spectral_domain).lower(),
        cornea_front_radii=(front_axial, front_h, front_v),
        cornea_front_center=(-front_axial, 0.0, 0.0),
        cornea_back_radii=(back_axial, back_t, back_t),
        cornea_back_center=(-CORNEA_THICKNESS - back_axial, 0.0, 0.0),
        posterior_chamber_radii=pc_radii,
        posterior_chamber_center=(-length + pc_radii[0], 0.0, 0.0),
        pupil_center=(-PUPIL_DEPTH, 0.0, 0.0),
        iris_center=(-IRIS_DEPTH, -nasal * IRIS_TEMPORAL_SHIFT, 0.0),
        iris_radius=IRIS_RADIUS,
        rotation_center_azi=(-ROTATION_CENTER_AZI_DEPTH * scale, 0.0, 0.0),
        rotation_center_ele=(-ROTATION_CENTER_ELE_DEPTH * scale, 0.0, 0.0),
        index_cornea=refractive_index("cornea", spectral_domain),
        index_aqueous=refractive_index("aqueous", spectral_domain),
        index_vitreous=refractive_index("vitreous", spectral_domain),
    )
