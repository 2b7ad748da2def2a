import json
import os

import numpy as np
import pytest

from transparent_track.errors import ConfigurationError
from transparent_track.scene_geometry.estimate_scene_geometry import apply_scene_params, scene_params_of
from transparent_track.scene_geometry.scene_geometry import SceneGeometry, create_scene_geometry


def test_defaults():
    sg = create_scene_geometry()
    assert sg.refraction_enabled
    np.testing.assert_array_equal(sg.camera.translation, [0.0, 0.0, 120.0])
    assert sg.eye.laterality == "right"
    assert sg.optical_system.medium == "air"
    assert not sg.without_refraction().refraction_enabled


def test_json_roundtrip_is_exact(tmp_path):
    sg = create_scene_geometry(translation=(1.5, -2.25, 97.125), rotation_z=1.0 / 3.0,
                               radial_distortion=(-0.12, 0.031), spherical_ametropia=-1.75,
                               laterality="left", medium="water")
    path = tmp_path / "scene.json"
    sg.save_json(path)
    loaded = SceneGeometry.load_json(path)
    # NaN entries of the optical system survive as JSON NaN literals
    assert json.dumps(loaded.to_dict()) == json.dumps(sg.to_dict())
    assert np.isnan(loaded.optical_system.p1p2[0, 0])
    assert os.listdir(tmp_path) == ["scene.json"]


def test_json_roundtrip_without_refraction(tmp_path):
    sg = create_scene_geometry(refraction=False)
    sg.save_json(tmp_path / "scene.json")
    assert SceneGeometry.load_json(tmp_path / "scene.json").optical_system is None


@pytest.mark.parametrize("kwargs", [
    dict(intrinsic_matrix=[[1.0, 0.0], [0.0, 1.0]]),
    dict(intrinsic_matrix=[[-2600.0, 0.0, 320.0], [0.0, 2600.0, 240.0], [0.0, 0.0, 1.0]]),
    dict(translation=(0.0, np.nan, 100.0)),
    dict(sensor_resolution=(0, 480)),
    dict(constraint_tolerance=-1.0),
    dict(medium="honey"),
    dict(medium="honey", refraction=False),
    dict(laterality="middle"),
    dict(spectral_domain="xray"),
])
def test_invalid_parameters(kwargs):
    with pytest.raises(ConfigurationError):
        create_scene_geometry(**kwargs)


def test_scene_params_identity():
    sg = create_scene_geometry(translation=(1.0, 2.0, 90.0), rotation_z=4.0)
    same = apply_scene_params(sg, scene_params_of(sg))
    assert json.dumps(same.to_dict()) == json.dumps(sg.to_dict())


def test_rotation_scalars():
    sg = create_scene_geometry()
    scaled = apply_scene_params(sg, [0.0, 0.0, 0.0, 120.0, 1.1, 1.05])
    np.testing.assert_allclose(scaled.eye.rotation_center_azi, sg.eye.rotation_center_azi * 1.1 * 1.05)
    np.testing.assert_allclose(scaled.eye.rotation_center_ele, sg.eye.rotation_center_ele * 1.1 / 1.05)
    np.testing.assert_array_equal(scaled.eye.pupil_center, sg.eye.pupil_center)
