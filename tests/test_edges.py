import numpy as np
import pytest

from slamkit.camera import Camera
from slamkit.edges import (
    EdgeProjectXYZ2UVPoseOnly,
    EdgeProjectXYZRGBD,
    EdgeProjectXYZRGBDPoseOnly,
    PointVertex,
    PoseVertex,
)
from slamkit.geometry import SE3, SO3


def sample_pose():
    return SE3(SO3.exp([0.1, -0.05, 0.2]), [0.3, -0.2, 0.5])


def numeric_pose_jacobian(edge, pose, eps=1e-6):
    base = pose.estimate
    columns = []
    for k in range(6):
        delta = np.zeros(6)
        delta[k] = eps
        pose.estimate = base
        pose.oplus(delta)
        plus = edge.compute_error().copy()
        pose.estimate = base
        pose.oplus(-delta)
        minus = edge.compute_error().copy()
        columns.append((plus - minus) / (2 * eps))
    pose.estimate = base
    return np.column_stack(columns)


def numeric_point_jacobian(edge, point, eps=1e-6):
    base = point.estimate.copy()
    columns = []
    for k in range(3):
        delta = np.zeros(3)
        delta[k] = eps
        point.estimate = base
        point.oplus(delta)
        plus = edge.compute_error().copy()
        point.estimate = base
        point.oplus(-delta)
        minus = edge.compute_error().copy()
        columns.append((plus - minus) / (2 * eps))
    point.estimate = base
    return np.column_stack(columns)


def test_pose_oplus_translation_only():
    pose = PoseVertex()
    pose.oplus([0.0, 0.0, 0.0, 1.0, 2.0, 3.0])
    np.testing.assert_allclose(pose.estimate.translation, [1.0, 2.0, 3.0])
    np.testing.assert_allclose(pose.estimate.rotation_matrix, np.eye(3))


def test_pose_oplus_rotation_only():
    pose = PoseVertex()
    pose.oplus([0.1, 0.2, -0.3, 0.0, 0.0, 0.0])
    np.testing.assert_allclose(pose.estimate.rotation.log(), [0.1, 0.2, -0.3], atol=1e-12)
    np.testing.assert_allclose(pose.estimate.translation, np.zeros(3), atol=1e-12)


def test_pose_oplus_rejects_wrong_size():
    with pytest.raises(ValueError):
        PoseVertex().oplus([1.0, 2.0, 3.0])


def test_point_oplus_adds():
    point = PointVertex([1.0, 2.0, 3.0])
    point.oplus([0.5, 0.5, 0.5])
    np.testing.assert_allclose(point.estimate, [1.5, 2.5, 3.5])


def test_rgbd_pose_only_zero_error_at_truth():
    pose = PoseVertex(sample_pose())
    point = np.array([1.0, 2.0, 4.0])
    edge = EdgeProjectXYZRGBDPoseOnly(pose, point, sample_pose().act(point))
    np.testing.assert_allclose(edge.compute_error(), np.zeros(3), atol=1e-12)


def test_rgbd_pose_only_error_sign():
    pose = PoseVertex()
    point = np.array([1.0, 2.0, 4.0])
    offset = np.array([0.1, -0.2, 0.3])
    edge = EdgeProjectXYZRGBDPoseOnly(pose, point, point + offset)
    np.testing.assert_allclose(edge.compute_error(), offset, atol=1e-12)
    np.testing.assert_allclose(edge.error, offset, atol=1e-12)


def test_rgbd_pose_only_jacobian_at_identity():
    edge = EdgeProjectXYZRGBDPoseOnly(PoseVertex(), [1.0, 2.0, 3.0], [0.0, 0.0, 0.0])
    jac = edge.linearize_oplus()
    np.testing.assert_allclose(jac[0], [0.0, -3.0, 2.0, -1.0, 0.0, 0.0])
    np.testing.assert_allclose(jac[:, 3:], -np.eye(3))


def test_rgbd_pose_only_jacobian_matches_numeric():
    pose = PoseVertex(sample_pose())
    edge = EdgeProjectXYZRGBDPoseOnly(pose, [1.0, -0.5, 3.0], [0.2, 0.1, 2.0])
    analytic = edge.linearize_oplus()
    np.testing.assert_allclose(analytic, numeric_pose_jacobian(edge, pose), atol=1e-6)


def test_rgbd_binary_jacobians_match_numeric():
    pose = PoseVertex(sample_pose())
    point = PointVertex([0.7, 0.4, 2.5])
    edge = EdgeProjectXYZRGBD(point, pose, [0.0, 0.0, 3.0])
    jac_point, jac_pose = edge.linearize_oplus()
    np.testing.assert_allclose(jac_point, numeric_point_jacobian(edge, point), atol=1e-6)
    np.testing.assert_allclose(jac_pose, numeric_pose_jacobian(edge, pose), atol=1e-6)


def test_rgbd_binary_point_jacobian_is_minus_rotation():
    pose = PoseVertex(sample_pose())
    edge = EdgeProjectXYZRGBD(PointVertex([1.0, 1.0, 1.0]), pose, [0.0, 0.0, 0.0])
    jac_point, _ = edge.linearize_oplus()
    np.testing.assert_allclose(jac_point, -sample_pose().rotation_matrix)


def test_uv_zero_error_at_projection():
    camera = Camera(fx=500.0, fy=480.0, cx=320.0, cy=240.0)
    pose = PoseVertex(sample_pose())
    point = np.array([0.2, -0.1, 3.0])
    measurement = camera.world2pixel(point, sample_pose())
    edge = EdgeProjectXYZ2UVPoseOnly(pose, point, camera, measurement)
    np.testing.assert_allclose(edge.compute_error(), np.zeros(2), atol=1e-9)


def test_uv_jacobian_matches_numeric():
    camera = Camera(fx=500.0, fy=480.0, cx=320.0, cy=240.0)
    pose = PoseVertex(sample_pose())
    edge = EdgeProjectXYZ2UVPoseOnly(pose, [0.4, -0.3, 2.0], camera, [300.0, 250.0])
    analytic = edge.linearize_oplus()
    assert analytic.shape == (2, 6)
    np.testing.assert_allclose(
        analytic, numeric_pose_jacobian(edge, pose), rtol=1e-5, atol=1e-4
    )


def test_uv_jacobian_translation_columns_at_identity():
    camera = Camera(fx=500.0, fy=480.0, cx=320.0, cy=240.0)
    edge = EdgeProjectXYZ2UVPoseOnly(PoseVertex(), [0.0, 0.0, 2.0], camera, [0.0, 0.0])
    jac = edge.linearize_oplus()
    np.testing.assert_allclose(jac[0, 3], -camera.fx / 2.0)
    np.testing.assert_allclose(jac[1, 4], -camera.fy / 2.0)
    np.testing.assert_allclose(jac[:, 5], np.zeros(2))


def test_uv_measurement_must_be_two_dimensional():
    camera = Camera(fx=500.0, fy=500.0, cx=320.0, cy=240.0)
    with pytest.raises(ValueError):
        EdgeProjectXYZ2UVPoseOnly(PoseVertex(), [0.0, 0.0, 1.0], camera, [1.0, 2.0, 3.0])