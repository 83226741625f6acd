import numpy as np
import pytest

from slamkit.config import Config, load_parameters

PARAMS = """%YAML:1.0
dataset_dir: /data/sequence
camera.fx: 517.3
camera.fy: 516.5
number_of_features: 500
match_ratio: 2.0
"""


@pytest.fixture
def param_file(tmp_path):
    path = tmp_path / "default.yaml"
    path.write_text(PARAMS, encoding="utf-8")
    return path


def test_load_parameters_reads_values(param_file):
    params = load_parameters(param_file)
    assert params["dataset_dir"] == "/data/sequence"
    assert params["camera.fx"] == pytest.approx(517.3)
    assert params["number_of_features"] == 500


def test_config_get_after_set(param_file):
    Config.set_parameter_file(str(param_file))
    assert Config.get("camera.fy") == pytest.approx(516.5)
    assert Config.get("match_ratio") == pytest.approx(2.0)


def test_missing_file_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        Config.set_parameter_file(tmp_path / "absent.yaml")


def test_missing_key_raises(param_file):
    Config.set_parameter_file(param_file)
    with pytest.raises(KeyError):
        Config.get("no_such_key")


def test_file_without_header(tmp_path):
    path = tmp_path / "plain.yaml"
    path.write_text("min_inliers: 10\n", encoding="utf-8")
    assert load_parameters(path) == {"min_inliers": 10}


def test_empty_file_gives_empty_mapping(tmp_path):
    path = tmp_path / "empty.yaml"
    path.write_text("%YAML:1.0\n", encoding="utf-8")
    assert load_parameters(path) == {}


def test_non_mapping_rejected(tmp_path):
    path = tmp_path / "list.yaml"
    path.write_text("- 1\n- 2\n", encoding="utf-8")
    with pytest.raises(ValueError):
        load_parameters(path)


def test_matrix_node(tmp_path):
    path = tmp_path / "matrix.yaml"
    path.write_text(
        "%YAML:1.0\n"
        "K: !!opencv-matrix\n"
        "   rows: 2\n"
        "   cols: 2\n"
        "   dt: d\n"
        "   data: [ 1.0, 2.0, 3.0, 4.0 ]\n",
        encoding="utf-8",
    )
    k = load_parameters(path)["K"]
    assert k.shape == (2, 2)
    assert np.allclose(k, [[1.0, 2.0], [3.0, 4.0]])