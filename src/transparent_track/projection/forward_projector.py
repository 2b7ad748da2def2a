# projection/forward_projector.py
"""
Forward model: eye pose + scene geometry -> image of the pupil.

1. Build eye-world points (pupil perimeter; optionally the full eye model).
2. Replace pupil/iris points by their virtual images through the cornea.
3. Rotate the eye about its azimuthal and elevational centers.
4. Re-express in scene world (X = p2, Y = -p3, Z = p1).
5. Project through the camera.
6. Fit an ellipse to the pupil perimeter image points.

Positive azimuth moves the pupil towards larger image x, positive elevation
towards larger image y.
"""
from __future__ import annotations
from dataclasses import dataclass, field
import numpy as np

from transparent_track.errors import EyeModelError, RefractionError
from transparent_track.eye_model.eye_rotation import as_pose_array, head_to_scene_world, rotate_eye_points
from transparent_track.geometry.ellipse import fit_ellipse_direct, nan_ellipse
from transparent_track.logging_utils.logging_setup import get_logger
from transparent_track.ray_tracing.ray_tracer import trace_virtual_image
from transparent_track.scene_geometry.scene_geometry import SceneGeometry

log = get_logger(__name__)

PUPIL_PERIMETER = "pupilPerimeter"
PUPIL_CENTER = "pupilCenter"
IRIS_PERIMETER = "irisPerimeter"
IRIS_CENTER = "irisCenter"
AZI_ROTATION_CENTER = "aziRotationCenter"
ELE_ROTATION_CENTER = "eleRotationCenter"
POSTERIOR_CHAMBER = "posteriorChamber"
ANTERIOR_CHAMBER = "anteriorChamber"
CORNEAL_APEX = "cornealApex"

REFRACTED_LABELS = frozenset({PUPIL_PERIMETER, PUPIL_CENTER, IRIS_PERIMETER, IRIS_CENTER})


@dataclass
class PupilProjection:
    ellipse: np.ndarray
    image_points: np.ndarray
    scene_world_points: np.ndarray
    eye_world_points: np.ndarray
    point_labels: list[str] = field(default_factory=list)
    n_refraction_failures: int = 0

    def label_mask(self, label: str) -> np.ndarray:
        return np.array([lbl == label for lbl in self.point_labels], dtype=bool)

    def image_points_of(self, label: str) -> np.ndarray:
        return self.image_points[self.label_mask(label)]


def _circle_points(center: np.ndarray, radius: float, n: int) -> np.ndarray:
    angles = np.arange(n) * (2.0 * np.pi / n)
    return np.column_stack([
        np.full(n, center[0]),
        np.cos(angles) * radius + center[1],
        np.sin(angles) * radius + center[2],
    ])


def _ellipsoid_mesh(center: np.ndarray, radii: np.ndarray, n: int) -> np.ndarray:
    """(n+1)^2 surface points of an ellipsoid with its poles on the p1 axis."""
    phi = np.linspace(-np.pi / 2, np.pi / 2, n + 1)
    theta = np.linspace(-np.pi, np.pi, n + 1)
    phi, theta = np.meshgrid(phi, theta)
    return np.column_stack([
        center[0] + radii[0] * np.sin(phi).ravel(),
        center[1] + radii[1] * (np.cos(phi) * np.cos(theta)).ravel(),
        center[2] + radii[2] * (np.cos(phi) * np.sin(theta)).ravel(),
    ])


def _eye_world_points(scene_geometry: SceneGeometry, pupil_radius: float, full_eye_model: bool,
                      n_pupil_perim_points: int, n_iris_perim_points: int, n_mesh_points: int):
    eye = scene_geometry.eye
    blocks = [(_circle_points(eye.pupil_center, pupil_radius, n_pupil_perim_points), PUPIL_PERIMETER)]

    if full_eye_model:
        blocks += [
            (eye.pupil_center[None, :], PUPIL_CENTER),
            (eye.iris_center[None, :], IRIS_CENTER),
            (eye.rotation_center_azi[None, :], AZI_ROTATION_CENTER),
            (eye.rotation_center_ele[None, :], ELE_ROTATION_CENTER),
        ]
        iris_p1 = eye.iris_center[0]

        posterior = _ellipsoid_mesh(eye.posterior_chamber_center, eye.posterior_chamber_radii, n_mesh_points)
        keep = (posterior[:, 0] > eye.posterior_chamber_center[0]) & (posterior[:, 0] < iris_p1)
        if not np.any(keep):
            raise EyeModelError("no posterior chamber points lie between its center and the iris plane")
        blocks.append((posterior[keep], POSTERIOR_CHAMBER))

        blocks.append((_circle_points(eye.iris_center, eye.iris_radius, n_iris_perim_points), IRIS_PERIMETER))

        anterior = _ellipsoid_mesh(eye.cornea_front_center, eye.cornea_front_radii, n_mesh_points)
        blocks.append((anterior[anterior[:, 0] > iris_p1], ANTERIOR_CHAMBER))
        blocks.append((np.zeros((1, 3)), CORNEAL_APEX))

    points = np.vstack([b for b, _ in blocks])
    labels = [lbl for b, lbl in blocks for _ in range(b.shape[0])]
    return points, labels


def project_pupil(eye_pose,
                  scene_geometry: SceneGeometry,
                  full_eye_model: bool = False,
                  n_pupil_perim_points: int = 5,
                  n_iris_perim_points: int = 5,
                  n_mesh_points: int = 30,
                  ray_trace: bool = True,
                  ray_trace_max_iterations: int = 200) -> PupilProjection:
    """
    Project the pupil (and optionally the whole eye model) for one eye pose.
    Points whose refraction cannot be traced become NaN. The ellipse is all-NaN
    when the pupil radius is zero or fewer than 5 pupil points are projected,
    including when n_pupil_perim_points itself is below 5.
    """
    pose = as_pose_array(eye_pose)

    eye_world, labels = _eye_world_points(scene_geometry, pose[3], full_eye_model,
                                          n_pupil_perim_points, n_iris_perim_points, n_mesh_points)
    centers = scene_geometry.eye.rotation_centers

    virtual = eye_world.copy()
    n_failures = 0
    if ray_trace and scene_geometry.optical_system is not None:
        camera_eye = rotate_eye_points(scene_geometry.camera.position_head_world, pose, centers, inverse=True)[0]
        for i, lbl in enumerate(labels):
            if lbl not in REFRACTED_LABELS:
                continue
            try:
                virtual[i] = trace_virtual_image(eye_world[i], camera_eye, scene_geometry.optical_system,
                                                 ray_trace_max_iterations)
            except RefractionError as e:
                virtual[i] = np.nan
                n_failures += 1
                log.debug("Dropping %s point %d at pose %s: %s", lbl, i, pose.tolist(), e)

    head_world = rotate_eye_points(virtual, pose, centers)
    scene_world = head_to_scene_world(head_world)
    image = scene_geometry.camera.project(scene_world)

    pupil_image = image[:n_pupil_perim_points]
    finite = np.all(np.isfinite(pupil_image), axis=1)
    ellipse = nan_ellipse()
    if pose[3] != 0 and np.count_nonzero(finite) >= 5:
        fitted = fit_ellipse_direct(pupil_image[finite, 0], pupil_image[finite, 1])
        if fitted is not None:
            ellipse = fitted

    return PupilProjection(
        ellipse=ellipse,
        image_points=image,
        scene_world_points=scene_world,
        eye_world_points=eye_world,
        point_labels=labels,
        n_refraction_failures=n_failures,
    )
