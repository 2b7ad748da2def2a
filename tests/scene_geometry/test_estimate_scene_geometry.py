import numpy as np
import pytest

from transparent_track.errors import ConfigurationError
from transparent_track.projection.forward_projector import project_pupil
from transparent_track.scene_geometry.constrain_ellipse import constrain_ellipse_by_scene_geometry
from transparent_track.scene_geometry.depth_from_iris import depth_from_iris_diameter, predicted_iris_diameter
from transparent_track.scene_geometry.estimate_scene_geometry import (
    default_scene_param_bounds, estimate_scene_geometry,
)
from transparent_track.scene_geometry.scene_geometry import create_scene_geometry


@pytest.fixture(scope="module")
def truth():
    return create_scene_geometry(translation=(0.0, 0.0, 100.0), refraction=False)


@pytest.fixture(scope="module")
def gaze_ellipses(truth):
    poses = [(a, e, 0.0, 2.0) for a in (-15.0, 0.0, 15.0) for e in (-10.0, 0.0, 10.0)]
    return np.array([project_pupil(p, truth, ray_trace=False).ellipse for p in poses])


def test_camera_depth_is_recovered(truth, gaze_ellipses):
    start = truth.with_camera(translation=(0.0, 0.0, 90.0))
    lb = [0.0, 0.0, 0.0, 80.0, 1.0, 1.0]
    ub = [0.0, 0.0, 0.0, 120.0, 1.0, 1.0]
    est = estimate_scene_geometry(gaze_ellipses, start, lb, ub, ray_trace=False)
    assert est.scene_params[3] == pytest.approx(100.0, abs=1.0)
    assert est.scene_geometry.camera.translation[2] == est.scene_params[3]
    assert est.rmse < 0.05
    assert est.eye_poses.shape == (9, 4)
    assert est.n_evaluations > 0


def test_fixed_parameters_are_only_evaluated(truth, gaze_ellipses):
    params = [0.0, 0.0, 0.0, 100.0, 1.0, 1.0]
    est = estimate_scene_geometry(gaze_ellipses, truth, params, params, ray_trace=False)
    assert est.n_evaluations == 0
    assert est.rmse < 1e-3
    np.testing.assert_allclose(est.eye_poses[4], [0.0, 0.0, 0.0, 2.0], atol=1e-3)


def test_nan_ellipses_are_skipped(truth, gaze_ellipses):
    ellipses = gaze_ellipses.copy()
    ellipses[0] = np.nan
    params = [0.0, 0.0, 0.0, 100.0, 1.0, 1.0]
    est = estimate_scene_geometry(ellipses, truth, params, params, ray_trace=False)
    assert est.eye_poses.shape == (8, 4)


def test_estimation_needs_three_ellipses(truth, gaze_ellipses):
    params = [0.0, 0.0, 0.0, 100.0, 1.0, 1.0]
    with pytest.raises(ConfigurationError):
        estimate_scene_geometry(gaze_ellipses[:2], truth, params, params, ray_trace=False)


def test_malformed_scene_bounds(truth, gaze_ellipses):
    with pytest.raises(ConfigurationError):
        estimate_scene_geometry(gaze_ellipses, truth, [0, 0, 0, 120, 1, 1], [0, 0, 0, 80, 1, 1])
    with pytest.raises(ConfigurationError):
        estimate_scene_geometry(gaze_ellipses, truth, [0, 0, 0, 80, 0, 1], [0, 0, 0, 120, 1, 1])


def test_default_bounds_bracket_the_depth():
    lb, ub = default_scene_param_bounds(100.0, 5.0)
    assert lb[3] == 90.0 and ub[3] == 110.0
    assert np.all(lb <= ub)


def test_depth_from_iris_diameter():
    at_100 = create_scene_geometry(translation=(0.0, 0.0, 100.0))
    observed = predicted_iris_diameter(at_100)
    assert observed > 0
    start = create_scene_geometry(translation=(0.0, 0.0, 65.0))
    depth, depth_sd = depth_from_iris_diameter(start, observed)
    assert depth == pytest.approx(100.0, abs=0.5)
    assert 0.0 < depth_sd < 20.0


def test_iris_diameter_must_be_positive(truth):
    with pytest.raises(ConfigurationError):
        depth_from_iris_diameter(truth, 0.0)
    with pytest.raises(ConfigurationError):
        depth_from_iris_diameter(truth, np.nan)


def test_constrained_shape_matches_projection(truth):
    ellipse = project_pupil([12.0, -6.0, 0.0, 2.0], truth, ray_trace=False).ellipse
    ecc, theta = constrain_ellipse_by_scene_geometry(ellipse[:2], truth)
    assert ecc == pytest.approx(ellipse[3], abs=1e-5)
    assert theta == pytest.approx(ellipse[4], abs=1e-4)
