"""Graph-optimisation vertices and edges for pose and structure refinement.

Pose updates are 6-vectors ordered as (rotation, translation), and every
Jacobian below uses that column order.
"""

from __future__ import annotations

from dataclasses import dataclass, field

import numpy as np

from slamkit.camera import Camera
from slamkit.geometry import SE3


def _vector(value, size: int, name: str) -> np.ndarray:
    vec = np.array(value, dtype=float).reshape(-1)
    if vec.shape != (size,):
        raise ValueError(f"{name} must have exactly {size} components, got shape {vec.shape}")
    return vec


def _xyz_pose_jacobian(p: np.ndarray) -> np.ndarray:
    """Jacobian of (measurement - transformed point) w.r.t. a left pose update."""
    x, y, z = p
    return np.array(
        [
            [0.0, -z, y, -1.0, 0.0, 0.0],
            [z, 0.0, -x, 0.0, -1.0, 0.0],
            [-y, x, 0.0, 0.0, 0.0, -1.0],
        ]
    )


@dataclass(eq=False)
class PoseVertex:
    """A camera pose estimate updated on the left by the exponential map."""

    estimate: SE3 = field(default_factory=SE3)
    id: int = 0
    fixed: bool = False

    def oplus(self, update) -> None:
        """Apply a (rotation, translation) increment: T <- exp(update) * T."""
        delta = _vector(update, 6, "update")
        twist = np.concatenate([delta[3:], delta[:3]])
        self.estimate = SE3.exp(twist) @ self.estimate


@dataclass(eq=False)
class PointVertex:
    """A 3D point estimate updated additively."""

    estimate: np.ndarray = field(default_factory=lambda: np.zeros(3))
    id: int = 0
    fixed: bool = False

    def __post_init__(self) -> None:
        self.estimate = _vector(self.estimate, 3, "estimate")

    def oplus(self, update) -> None:
        self.estimate = self.estimate + _vector(update, 3, "update")


@dataclass(eq=False)
class EdgeProjectXYZRGBD:
    """3D-3D edge between a point and a pose: error = measurement - T * point."""

    point: PointVertex
    pose: PoseVertex
    measurement: np.ndarray
    information: np.ndarray = field(default_factory=lambda: np.eye(3))
    id: int = 0
    error: np.ndarray = field(init=False, default_factory=lambda: np.zeros(3))
    jacobian_xi: np.ndarray = field(init=False, default_factory=lambda: np.zeros((3, 3)))
    jacobian_xj: np.ndarray = field(init=False, default_factory=lambda: np.zeros((3, 6)))

    def __post_init__(self) -> None:
        self.measurement = _vector(self.measurement, 3, "measurement")

    def compute_error(self) -> np.ndarray:
        self.error = self.measurement - self.pose.estimate.act(self.point.estimate)
        return self.error

    def linearize_oplus(self) -> tuple[np.ndarray, np.ndarray]:
        """Jacobians w.r.t. the point (3x3) and the pose (3x6)."""
        t = self.pose.estimate
        xyz_trans = t.act(self.point.estimate)
        self.jacobian_xi = -t.rotation_matrix
        self.jacobian_xj = _xyz_pose_jacobian(xyz_trans)
        return self.jacobian_xi, self.jacobian_xj


@dataclass(eq=False)
class EdgeProjectXYZRGBDPoseOnly:
    """3D-3D edge on a pose alone: error = measurement - T * point."""

    pose: PoseVertex
    point: np.ndarray
    measurement: np.ndarray
    information: np.ndarray = field(default_factory=lambda: np.eye(3))
    id: int = 0
    error: np.ndarray = field(init=False, default_factory=lambda: np.zeros(3))
    jacobian: np.ndarray = field(init=False, default_factory=lambda: np.zeros((3, 6)))

    def __post_init__(self) -> None:
        self.point = _vector(self.point, 3, "point")
        self.measurement = _vector(self.measurement, 3, "measurement")

    def compute_error(self) -> np.ndarray:
        self.error = self.measurement - self.pose.estimate.act(self.point)
        return self.error

    def linearize_oplus(self) -> np.ndarray:
        self.jacobian = _xyz_pose_jacobian(self.pose.estimate.act(self.point))
        return self.jacobian


@dataclass(eq=False)
class EdgeProjectXYZ2UVPoseOnly:
    """3D-2D reprojection edge on a pose: error = measurement - project(T * point)."""

    pose: PoseVertex
    point: np.ndarray
    camera: Camera
    measurement: np.ndarray
    information: np.ndarray = field(default_factory=lambda: np.eye(2))
    id: int = 0
    error: np.ndarray = field(init=False, default_factory=lambda: np.zeros(2))
    jacobian: np.ndarray = field(init=False, default_factory=lambda: np.zeros((2, 6)))

    def __post_init__(self) -> None:
        self.point = _vector(self.point, 3, "point")
        self.measurement = _vector(self.measurement, 2, "measurement")

    def compute_error(self) -> np.ndarray:
        self.error = self.measurement - self.camera.camera2pixel(
            self.pose.estimate.act(self.point)
        )
        return self.error

    def linearize_oplus(self) -> np.ndarray:
        x, y, z = self.pose.estimate.act(self.point)
        z_2 = z * z
        fx, fy = self.camera.fx, self.camera.fy
        self.jacobian = np.array(
            [
                [
                    x * y / z_2 * fx,
                    -(1.0 + x * x / z_2) * fx,
                    y / z * fx,
                    -1.0 / z * fx,
                    0.0,
                    x / z_2 * fx,
                ],
                [
                    (1.0 + y * y / z_2) * fy,
                    -x * y / z_2 * fy,
                    -x / z * fy,
                    0.0,
                    -1.0 / z * fy,
                    y / z_2 * fy,
                ],
            ]
        )
        return self.jacobian