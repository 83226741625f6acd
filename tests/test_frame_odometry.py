import numpy as np
import pytest

from slamkit.camera import Camera
from slamkit.config import Config
from slamkit.frame import Frame
from slamkit.frame_odometry import FrameToFrameOdometry
from slamkit.visual_odometry import VOState

HEIGHT, WIDTH = 120, 160


def _camera():
    return Camera(fx=100.0, fy=100.0, cx=80.0, cy=60.0, depth_scale=1000.0)


def _textured():
    rng = np.random.default_rng(7)
    return rng.integers(0, 256, size=(HEIGHT, WIDTH, 3), dtype=np.uint8)


def _random_depth():
    rng = np.random.default_rng(11)
    return rng.integers(800, 3000, size=(HEIGHT, WIDTH)).astype(np.uint16)


def _frame(color, depth):
    frame = Frame.create_frame()
    frame.camera = _camera()
    frame.color = color
    frame.depth = depth
    return frame


def _odometry(**kwargs):
    params = dict(num_of_features=150, level_pyramid=1, min_inliers=10, max_num_lost=10)
    params.update(kwargs)
    return FrameToFrameOdometry(**params)


def test_first_frame_initializes_reference_points():
    vo = _odometry()
    depth = np.full((HEIGHT, WIDTH), 1500, dtype=np.uint16)
    frame = _frame(_textured(), depth)
    assert vo.add_frame(frame) is True
    assert vo.state is VOState.OK
    assert vo.ref is frame
    assert list(vo.map.keyframes) == [frame.id]
    assert len(vo.pts_3d_ref) > 0
    assert len(vo.pts_3d_ref) == len(vo.descriptors_ref) == len(vo.keypoints_curr)
    assert np.allclose(vo.pts_3d_ref[:, 2], 1.5)


def test_identical_frame_tracks_identity_pose():
    vo = _odometry()
    color, depth = _textured(), _random_depth()
    first = _frame(color, depth)
    second = _frame(color.copy(), depth.copy())
    vo.add_frame(first)
    assert vo.add_frame(second) is True
    assert vo.state is VOState.OK
    assert vo.num_inliers >= 10
    assert vo.num_lost == 0
    assert vo.ref is second
    assert np.allclose(second.t_c_w.matrix(), np.eye(4), atol=1e-3)
    # negligible motion: no new key-frame
    assert list(vo.map.keyframes) == [first.id]


def test_too_few_inliers_rejects_pose():
    vo = _odometry(min_inliers=10**6)
    color, depth = _textured(), _random_depth()
    first = _frame(color, depth)
    vo.add_frame(first)
    assert vo.add_frame(_frame(color.copy(), depth.copy())) is False
    assert vo.num_lost == 1
    assert vo.state is VOState.OK
    assert vo.ref is first


def test_featureless_frame_leads_to_lost_state():
    vo = _odometry(max_num_lost=0)
    vo.add_frame(_frame(_textured(), _random_depth()))
    blank = _frame(np.zeros((HEIGHT, WIDTH, 3), dtype=np.uint8), _random_depth())
    assert vo.add_frame(blank) is False
    assert vo.feature_matches == []
    assert vo.num_inliers == 0
    assert vo.state is VOState.LOST
    # once lost, frames are ignored
    assert vo.add_frame(_frame(_textured(), _random_depth())) is True
    assert vo.state is VOState.LOST


def test_from_config_reads_parameters(tmp_path):
    path = tmp_path / "params.yaml"
    path.write_text(
        "%YAML:1.0\n"
        "number_of_features: 300\n"
        "scale_factor: 1.5\n"
        "level_pyramid: 2\n"
        "match_ratio: 3.0\n"
        "max_num_lost: 7\n"
        "min_inliers: 12\n"
        "keyframe_rotation: 0.2\n"
        "keyframe_translation: 0.3\n"
        "map_point_erase_ratio: 0.25\n",
        encoding="utf-8",
    )
    Config.set_parameter_file(path)
    vo = FrameToFrameOdometry.from_config()
    assert vo.num_of_features == 300
    assert vo.scale_factor == pytest.approx(1.5)
    assert vo.level_pyramid == 2
    assert vo.match_ratio == pytest.approx(3.0)
    assert vo.max_num_lost == 7
    assert vo.min_inliers == 12
    assert vo.key_frame_min_rot == pytest.approx(0.2)
    assert vo.key_frame_min_trans == pytest.approx(0.3)
    assert vo.orb.num_levels == 2
    assert vo.state is VOState.INITIALIZING