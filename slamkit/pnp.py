"""Camera pose from 3D-2D correspondences, with RANSAC outlier rejection."""

from __future__ import annotations

import math
from dataclasses import dataclass, field

import numpy as np

from slamkit.camera import Camera
from slamkit.edges import EdgeProjectXYZ2UVPoseOnly, PoseVertex
from slamkit.geometry import SE3, SO3
from slamkit.optimizer import optimize_pose

_SAMPLE_SIZE = 6
_REFINE_ITERATIONS = 10
_RANSAC_SEED = 0


@dataclass
class PnPResult:
    """Rotation vector, translation and inlier indices of a pose estimate."""

    rvec: np.ndarray
    tvec: np.ndarray
    inliers: list[int] = field(default_factory=list)

    @property
    def pose(self) -> SE3:
        return SE3.from_rotation_vector(self.rvec, self.tvec)

    @property
    def num_inliers(self) -> int:
        return len(self.inliers)


def _as_points(points, dim: int, name: str) -> np.ndarray:
    arr = np.asarray(points, dtype=float)
    if arr.size == 0:
        return arr.reshape(0, dim)
    if arr.ndim != 2 or arr.shape[1] != dim:
        raise ValueError(f"{name} must have shape (N, {dim}), got {arr.shape}")
    return arr


def _inputs(points3d, points2d, camera_matrix):
    p3 = _as_points(points3d, 3, "points3d")
    p2 = _as_points(points2d, 2, "points2d")
    if len(p3) != len(p2):
        raise ValueError("points3d and points2d must have the same length")
    k = np.asarray(camera_matrix, dtype=float)
    if k.shape != (3, 3):
        raise ValueError("camera_matrix must be 3x3")
    camera = Camera(fx=k[0, 0], fy=k[1, 1], cx=k[0, 2], cy=k[1, 2])
    homog = np.column_stack([p2, np.ones(len(p2))]) @ np.linalg.inv(k).T
    normalized = homog[:, :2] / homog[:, 2:3]
    return p3, p2, camera, normalized


def _dlt(p3: np.ndarray, normalized: np.ndarray) -> SE3 | None:
    centroid = p3.mean(axis=0)
    spread = float(np.mean(np.linalg.norm(p3 - centroid, axis=1)))
    if spread <= 0.0:
        return None
    scale = math.sqrt(3.0) / spread
    xh = np.column_stack([(p3 - centroid) * scale, np.ones(len(p3))])
    u, v = normalized[:, 0:1], normalized[:, 1:2]
    a = np.zeros((2 * len(p3), 12))
    a[0::2, 0:4] = xh
    a[0::2, 8:12] = -u * xh
    a[1::2, 4:8] = xh
    a[1::2, 8:12] = -v * xh
    projection = np.linalg.svd(a)[2][-1].reshape(3, 4)

    denorm = np.eye(4)
    denorm[:3, :3] *= scale
    denorm[:3, 3] = -scale * centroid
    projection = projection @ denorm
    depths = projection[2] @ np.column_stack([p3, np.ones(len(p3))]).T
    if np.sum(np.sign(depths)) < 0:
        projection = -projection

    uu, sv, vt = np.linalg.svd(projection[:, :3])
    rotation = uu @ vt
    if np.linalg.det(rotation) < 0:
        rotation = uu @ np.diag([1.0, 1.0, -1.0]) @ vt
    factor = float(sv.mean())
    if not math.isfinite(factor) or factor <= 1e-12:
        return None
    return SE3(SO3(rotation), projection[:, 3] / factor)


def _refine(pose: SE3, p3, p2, camera: Camera) -> SE3:
    vertex = PoseVertex(pose)
    edges = [
        EdgeProjectXYZ2UVPoseOnly(pose=vertex, point=p, camera=camera, measurement=m, id=i)
        for i, (p, m) in enumerate(zip(p3, p2))
    ]
    optimize_pose(vertex, edges, _REFINE_ITERATIONS)
    return vertex.estimate


def _inliers(pose: SE3, p3, p2, camera: Camera, threshold: float) -> np.ndarray:
    p_cam = pose.act(p3)
    z = p_cam[:, 2]
    front = z > 0
    safe_z = np.where(front, z, 1.0)
    u = camera.fx * p_cam[:, 0] / safe_z + camera.cx
    v = camera.fy * p_cam[:, 1] / safe_z + camera.cy
    err2 = (u - p2[:, 0]) ** 2 + (v - p2[:, 1]) ** 2
    return np.nonzero(front & (err2 <= threshold * threshold))[0]


def _result(pose: SE3, inliers) -> PnPResult:
    return PnPResult(
        rvec=np.array(pose.rotation.log()),
        tvec=np.array(pose.translation),
        inliers=[int(i) for i in inliers],
    )


def solve_pnp(points3d, points2d, camera_matrix) -> PnPResult:
    """Pose that maps world points onto their pixels, using every correspondence."""
    p3, p2, camera, normalized = _inputs(points3d, points2d, camera_matrix)
    if len(p3) < _SAMPLE_SIZE:
        raise ValueError(f"at least {_SAMPLE_SIZE} correspondences are needed")
    pose = _dlt(p3, normalized)
    if pose is None:
        raise ValueError("correspondences are degenerate")
    return _result(_refine(pose, p3, p2, camera), range(len(p3)))


def _needed_iterations(confidence: float, inlier_ratio: float, current: int) -> int:
    if inlier_ratio >= 1.0:
        return 0
    denom = math.log(1.0 - inlier_ratio**_SAMPLE_SIZE)
    if denom >= 0.0:
        return current
    return min(current, math.ceil(math.log(1.0 - confidence) / denom))


def solve_pnp_ransac(
    points3d,
    points2d,
    camera_matrix,
    iterations: int = 100,
    reprojection_error: float = 8.0,
    confidence: float = 0.99,
) -> PnPResult:
    """Robust pose estimate; an empty inlier list means no model was found."""
    if iterations < 0:
        raise ValueError("iterations must not be negative")
    if reprojection_error <= 0:
        raise ValueError("reprojection_error must be positive")
    if not 0.0 < confidence < 1.0:
        raise ValueError("confidence must lie strictly between 0 and 1")
    p3, p2, camera, normalized = _inputs(points3d, points2d, camera_matrix)
    n = len(p3)
    if n < _SAMPLE_SIZE:
        raise ValueError(f"at least {_SAMPLE_SIZE} correspondences are needed")

    rng = np.random.default_rng(_RANSAC_SEED)
    best_pose: SE3 | None = None
    best_inliers = np.zeros(0, dtype=int)
    limit = iterations
    done = 0
    while done < limit:
        done += 1
        sample = rng.choice(n, _SAMPLE_SIZE, replace=False)
        pose = _dlt(p3[sample], normalized[sample])
        if pose is None:
            continue
        inliers = _inliers(pose, p3, p2, camera, reprojection_error)
        if len(inliers) > len(best_inliers):
            best_pose, best_inliers = pose, inliers
            limit = _needed_iterations(confidence, len(inliers) / n, limit)

    if best_pose is None or len(best_inliers) < _SAMPLE_SIZE:
        return PnPResult(rvec=np.zeros(3), tvec=np.zeros(3), inliers=[])

    refined = _refine(best_pose, p3[best_inliers], p2[best_inliers], camera)
    refined_inliers = _inliers(refined, p3, p2, camera, reprojection_error)
    if len(refined_inliers) >= len(best_inliers):
        return _result(refined, refined_inliers)
    return _result(best_pose, best_inliers)