import numpy as np
import pytest

from transparent_track.errors import RefractionError
from transparent_track.eye_model.eye_anatomy import build_eye_anatomy
from transparent_track.eye_model.optical_system import OpticalSystem, assemble_optical_system
from transparent_track.ray_tracing.ray_tracer import (
    TRACE_MISS, TRACE_OK, TRACE_TIR, trace_exit_ray, trace_virtual_image,
)

CAMERA = np.array([120.0, 0.0, 0.0])


@pytest.fixture(scope="module")
def cornea():
    return assemble_optical_system(build_eye_anatomy())


def test_on_axis_point_is_not_displaced(cornea):
    point = np.array([-3.7, 0.0, 0.0])
    np.testing.assert_allclose(trace_virtual_image(point, CAMERA, cornea), point, atol=1e-9)


def test_cornea_magnifies_the_pupil(cornea):
    virtual = trace_virtual_image(np.array([-3.7, 2.0, 0.0]), CAMERA, cornea)
    assert 2.0 < virtual[1] < 2.6
    assert virtual[2] == pytest.approx(0.0, abs=1e-6)
    assert virtual[0] == -3.7


def test_vertical_plane_magnifies_too(cornea):
    virtual = trace_virtual_image(np.array([-3.7, 0.0, -2.0]), CAMERA, cornea)
    assert -2.6 < virtual[2] < -2.0


def test_index_matched_surfaces_do_not_move_points():
    eye = build_eye_anatomy()
    matched = assemble_optical_system(eye)
    rows = np.array(matched.p1p2)
    rows[:, 3] = 1.0
    optics = OpticalSystem(p1p2=rows, p1p3=rows)
    point = np.array([-3.7, 1.5, -0.8])
    np.testing.assert_allclose(trace_virtual_image(point, CAMERA, optics), point, atol=1e-6)


def test_camera_behind_the_eye_raises(cornea):
    with pytest.raises(RefractionError) as info:
        trace_virtual_image(np.array([-3.7, 1.0, 0.0]), np.array([-50.0, 0.0, 0.0]), cornea)
    assert info.value.plane == "p1p2"


def test_total_internal_reflection_is_reported():
    system = np.array([[np.nan, np.nan, np.nan, 1.5],
                       [-10.0, -10.0, -10.0, 1.0]])
    status, _, _ = trace_exit_ray(-10.0, 9.9, 0.0, system)
    assert status == TRACE_TIR


def test_ray_outside_the_surface_misses():
    system = np.array([[np.nan, np.nan, np.nan, 1.5],
                       [-10.0, -10.0, -10.0, 1.0]])
    status, _, _ = trace_exit_ray(-10.0, 20.0, 0.0, system)
    assert status == TRACE_MISS


def test_exit_ray_is_unit_length(cornea):
    status, point, direction = trace_exit_ray(-3.7, 1.0, 0.05, cornea.p1p2)
    assert status == TRACE_OK
    assert np.linalg.norm(direction) == pytest.approx(1.0)
    assert point[0] <= 0.0
