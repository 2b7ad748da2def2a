from __future__ import annotations
from dataclasses import dataclass
import numpy as np

EYE_POSE_LABELS = ("azimuth", "elevation", "torsion", "pupil radius")
EYE_POSE_UNITS = ("deg", "deg", "deg", "mm")


@dataclass(frozen=True)
class EyePose:
    azimuth: float = 0.0
    elevation: float = 0.0
    torsion: float = 0.0
    pupil_radius: float = 2.0

    def as_array(self) -> np.ndarray:
        return np.array([self.azimuth, self.elevation, self.torsion, self.pupil_radius], dtype=float)

    @classmethod
    def from_array(cls, values) -> "EyePose":
        a = as_pose_array(values)
        return cls(float(a[0]), float(a[1]), float(a[2]), float(a[3]))


def as_pose_array(eye_pose) -> np.ndarray:
    if isinstance(eye_pose, EyePose):
        return eye_pose.as_array()
    a = np.asarray(eye_pose, dtype=float).reshape(-1)
    if a.size != 4:
        raise ValueError(f"eye pose needs 4 values (azimuth, elevation, torsion, radius), got {a.size}")
    return a


def rotation_matrices(azimuth: float, elevation: float, torsion: float):
    """Rotations about p3 (azimuth), p2 (elevation) and p1 (torsion); angles in degrees."""
    a, e, t = np.deg2rad([azimuth, elevation, torsion])
    R_azi = np.array([[np.cos(a), -np.sin(a), 0.0],
                      [np.sin(a), np.cos(a), 0.0],
                      [0.0, 0.0, 1.0]])
    R_ele = np.array([[np.cos(e), 0.0, np.sin(e)],
                      [0.0, 1.0, 0.0],
                      [-np.sin(e), 0.0, np.cos(e)]])
    R_tor = np.array([[1.0, 0.0, 0.0],
                      [0.0, np.cos(t), -np.sin(t)],
                      [0.0, np.sin(t), np.cos(t)]])
    return R_azi, R_ele, R_tor


def rotate_eye_points(points: np.ndarray, eye_pose, rotation_centers, inverse: bool = False) -> np.ndarray:
    """
    Rigidly rotate (N,3) eye-world points into head-world.

    Azimuth turns about its own center, then elevation about its center, then
    torsion about the optical axis through the elevation center. With coincident
    centers this is R_tor @ R_ele @ R_azi. inverse=True undoes the rotation.
    """
    pose = as_pose_array(eye_pose)
    R_azi, R_ele, R_tor = rotation_matrices(pose[0], pose[1], pose[2])
    c_azi, c_ele = (np.asarray(c, dtype=float) for c in rotation_centers)
    X = np.atleast_2d(np.asarray(points, dtype=float))

    steps = [(R_azi, c_azi), (R_ele, c_ele), (R_tor, c_ele)]
    if inverse:
        steps = [(R.T, c) for R, c in reversed(steps)]
    for R, c in steps:
        X = (X - c) @ R.T + c
    return X


def head_to_scene_world(points: np.ndarray) -> np.ndarray:
    """(p1, p2, p3) -> (X, Y, Z) = (p2, -p3, p1)."""
    P = np.atleast_2d(np.asarray(points, dtype=float))
    return np.column_stack([P[:, 1], -P[:, 2], P[:, 0]])
