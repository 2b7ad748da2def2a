import numpy as np
import pytest

from transparent_track.eye_model.eye_rotation import (
    EyePose, as_pose_array, head_to_scene_world, rotate_eye_points, rotation_matrices,
)

CENTERS = (np.array([-13.5, 0.0, 0.0]), np.array([-12.5, 0.0, 0.0]))


def test_inverse_undoes_rotation():
    pts = np.array([[-3.7, 2.0, 0.5], [0.0, 0.0, 0.0], [-20.0, 1.0, -3.0]])
    pose = [12.0, -7.0, 4.0, 2.0]
    there = rotate_eye_points(pts, pose, CENTERS)
    back = rotate_eye_points(there, pose, CENTERS, inverse=True)
    np.testing.assert_allclose(back, pts, atol=1e-12)


def test_coincident_centers_compose_torsion_elevation_azimuth():
    center = np.array([-13.0, 0.0, 0.0])
    pts = np.array([[-3.7, 2.0, 0.5], [1.0, -1.0, 2.0]])
    R_azi, R_ele, R_tor = rotation_matrices(20.0, 10.0, 5.0)
    expected = (pts - center) @ (R_tor @ R_ele @ R_azi).T + center
    np.testing.assert_allclose(rotate_eye_points(pts, [20.0, 10.0, 5.0, 1.0], (center, center)), expected)


def test_rotation_directions():
    apex = np.zeros((1, 3))
    turned = rotate_eye_points(apex, [10.0, 0.0, 0.0, 1.0], CENTERS)[0]
    assert turned[1] > 0
    raised = rotate_eye_points(apex, [0.0, 10.0, 0.0, 1.0], CENTERS)[0]
    assert raised[2] < 0
    # scene world Y grows with elevation
    assert head_to_scene_world(raised)[0, 1] > 0


def test_pose_conversions():
    pose = EyePose(azimuth=3.0, elevation=-2.0, pupil_radius=1.5)
    np.testing.assert_array_equal(as_pose_array(pose), [3.0, -2.0, 0.0, 1.5])
    assert EyePose.from_array(pose.as_array()) == pose
    with pytest.raises(ValueError):
        as_pose_array([1.0, 2.0])
