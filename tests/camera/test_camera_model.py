import json

import numpy as np
import pytest

from transparent_track.camera.camera_model import (
    CameraModel, array_to_intrinsic_coordinates, intrinsic_to_array_coordinates,
)


def make_camera(**kw):
    params = dict(
        intrinsic_matrix=[[2600.0, 0.0, 320.0], [0.0, 2600.0, 240.0], [0.0, 0.0, 1.0]],
        radial_distortion=[0.0, 0.0],
        translation=[0.0, 0.0, 100.0],
    )
    params.update(kw)
    return CameraModel(**params)


def test_point_on_optical_axis_lands_on_principal_point():
    cam = make_camera()
    image = cam.project([[0.0, 0.0, -5.0]])
    np.testing.assert_allclose(image[0], [320.0, 240.0])


def test_pinhole_scaling_with_depth():
    cam = make_camera()
    image = cam.project([[1.0, 2.0, 0.0]])
    np.testing.assert_allclose(image[0], [320.0 + 26.0, 240.0 + 52.0])


def test_points_at_or_behind_camera_are_nan():
    cam = make_camera()
    image = cam.project([[0.0, 0.0, 100.0], [1.0, 1.0, 150.0], [0.0, 0.0, 0.0]])
    assert np.all(np.isnan(image[:2]))
    assert np.all(np.isfinite(image[2]))


def test_positive_radial_distortion_pushes_points_outward():
    plain = make_camera().project([[10.0, 0.0, 0.0]])[0]
    barrel = make_camera(radial_distortion=[0.5, 0.0]).project([[10.0, 0.0, 0.0]])[0]
    assert barrel[0] - 320.0 > plain[0] - 320.0
    assert barrel[1] == pytest.approx(240.0)


def test_camera_roll_rotates_image():
    cam = make_camera(rotation_z=90.0)
    image = cam.project([[1.0, 0.0, 0.0]])[0]
    assert image[0] == pytest.approx(320.0)
    assert image[1] == pytest.approx(240.0 + 26.0)


def test_skew_shifts_x_with_y():
    cam = make_camera(intrinsic_matrix=[[2600.0, 100.0, 320.0], [0.0, 2600.0, 240.0], [0.0, 0.0, 1.0]])
    image = cam.project([[0.0, 1.0, 0.0]])[0]
    assert image[0] == pytest.approx(321.0)


def test_position_in_head_world():
    cam = make_camera(translation=[1.0, 2.0, 90.0])
    np.testing.assert_allclose(cam.position_head_world, [90.0, 1.0, -2.0])
    np.testing.assert_allclose(cam.depth([[0.0, 0.0, -3.0]]), [93.0])


def test_arrays_are_read_only():
    cam = make_camera()
    with pytest.raises(ValueError):
        cam.translation[0] = 5.0


def test_pixel_origin_helpers_are_inverse():
    pts = np.array([[0.0, 0.0], [639.0, 479.0]])
    np.testing.assert_allclose(intrinsic_to_array_coordinates(array_to_intrinsic_coordinates(pts)), pts)
    np.testing.assert_allclose(array_to_intrinsic_coordinates(pts)[0], [1.0, 1.0])


def test_dict_roundtrip_through_json():
    cam = make_camera(radial_distortion=[-0.1, 0.02], rotation_z=3.0, sensor_resolution=(1280, 960))
    back = CameraModel.from_dict(json.loads(json.dumps(cam.to_dict())))
    np.testing.assert_array_equal(back.intrinsic_matrix, cam.intrinsic_matrix)
    np.testing.assert_array_equal(back.radial_distortion, cam.radial_distortion)
    assert back.sensor_resolution == (1280, 960)
    assert back.rotation_z == 3.0
