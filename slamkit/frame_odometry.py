"""Frame-to-frame visual odometry: each frame is tracked against the previous one."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field

import numpy as np

from slamkit.config import Config
from slamkit.edges import EdgeProjectXYZ2UVPoseOnly, PoseVertex
from slamkit.features import DESCRIPTOR_BYTES, DMatch, OrbExtractor, match_descriptors
from slamkit.frame import Frame
from slamkit.geometry import SE3
from slamkit.optimizer import optimize_pose
from slamkit.pnp import solve_pnp_ransac
from slamkit.visual_odometry import VOState
from slamkit.world_map import Map

logger = logging.getLogger(__name__)

_MIN_MATCH_DISTANCE = 30.0
_MAX_MOTION = 5.0
_MIN_PNP_POINTS = 6
_PNP_ITERATIONS = 100
_PNP_REPROJECTION_ERROR = 4.0
_PNP_CONFIDENCE = 0.99
_BA_ITERATIONS = 10


def _empty_descriptors() -> np.ndarray:
    return np.zeros((0, DESCRIPTOR_BYTES), dtype=np.uint8)


def _empty_points() -> np.ndarray:
    return np.zeros((0, 3))


@dataclass(eq=False)
class FrameToFrameOdometry:
    """Estimates each frame's pose relative to the previous reference frame."""

    num_of_features: int = 500
    scale_factor: float = 1.2
    level_pyramid: int = 4
    match_ratio: float = 2.0
    max_num_lost: int = 10
    min_inliers: int = 10
    key_frame_min_rot: float = 0.1
    key_frame_min_trans: float = 0.1
    map_point_erase_ratio: float = 0.1

    state: VOState = field(init=False, default=VOState.INITIALIZING)
    map: Map = field(init=False, default_factory=Map)
    ref: Frame | None = field(init=False, default=None)
    curr: Frame | None = field(init=False, default=None)
    pts_3d_ref: np.ndarray = field(init=False, default_factory=_empty_points)
    keypoints_curr: list = field(init=False, default_factory=list)
    descriptors_curr: np.ndarray = field(init=False, default_factory=_empty_descriptors)
    descriptors_ref: np.ndarray = field(init=False, default_factory=_empty_descriptors)
    feature_matches: list[DMatch] = field(init=False, default_factory=list)
    t_c_r_estimated: SE3 = field(init=False, default_factory=SE3)
    num_inliers: int = field(init=False, default=0)
    num_lost: int = field(init=False, default=0)
    orb: OrbExtractor = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self.orb = OrbExtractor(
            num_features=self.num_of_features,
            scale_factor=self.scale_factor,
            num_levels=self.level_pyramid,
        )

    @classmethod
    def from_config(cls) -> "FrameToFrameOdometry":
        """Build the odometry from the parameters of the global config."""
        return cls(
            num_of_features=int(Config.get("number_of_features")),
            scale_factor=float(Config.get("scale_factor")),
            level_pyramid=int(Config.get("level_pyramid")),
            match_ratio=float(Config.get("match_ratio")),
            max_num_lost=int(float(Config.get("max_num_lost"))),
            min_inliers=int(Config.get("min_inliers")),
            key_frame_min_rot=float(Config.get("keyframe_rotation")),
            key_frame_min_trans=float(Config.get("keyframe_translation")),
            map_point_erase_ratio=float(Config.get("map_point_erase_ratio")),
        )

    def add_frame(self, frame: Frame) -> bool:
        """Track a new frame; False when its pose estimate was rejected."""
        if self.state is VOState.INITIALIZING:
            self.state = VOState.OK
            self.curr = self.ref = frame
            self.map.insert_key_frame(frame)
            self._extract_key_points()
            self._compute_descriptors()
            self._set_ref_3d_points()
        elif self.state is VOState.OK:
            self.curr = frame
            self._extract_key_points()
            self._compute_descriptors()
            self._feature_matching()
            self._pose_estimation_pnp()
            if not self._check_estimated_pose():
                self.num_lost += 1
                if self.num_lost > self.max_num_lost:
                    self.state = VOState.LOST
                return False
            frame.t_c_w = self.t_c_r_estimated @ self.ref.t_c_w
            self.ref = frame
            self._set_ref_3d_points()
            self.num_lost = 0
            if self._check_key_frame():
                self._add_key_frame()
        else:
            logger.info("vo has lost.")
        return True

    def _extract_key_points(self) -> None:
        start = time.perf_counter()
        self.keypoints_curr = self.orb.detect(self.curr.color)
        logger.debug("extract keypoints cost time: %f", time.perf_counter() - start)

    def _compute_descriptors(self) -> None:
        start = time.perf_counter()
        self.keypoints_curr, self.descriptors_curr = self.orb.compute(
            self.curr.color, self.keypoints_curr
        )
        logger.debug("descriptor computation cost time: %f", time.perf_counter() - start)

    def _feature_matching(self) -> None:
        start = time.perf_counter()
        matches = match_descriptors(self.descriptors_ref, self.descriptors_curr)
        self.feature_matches = []
        if matches:
            min_dis = min(m.distance for m in matches)
            limit = max(min_dis * self.match_ratio, _MIN_MATCH_DISTANCE)
            self.feature_matches = [m for m in matches if m.distance < limit]
        logger.info("good matches: %d", len(self.feature_matches))
        logger.debug("match cost time: %f", time.perf_counter() - start)

    def _set_ref_3d_points(self) -> None:
        points = []
        rows = []
        for kp, descriptor in zip(self.keypoints_curr, self.descriptors_curr):
            d = self.ref.find_depth(kp)
            if d > 0:
                points.append(self.ref.camera.pixel2camera((kp.x, kp.y), d))
                rows.append(descriptor)
        self.pts_3d_ref = np.array(points, dtype=float).reshape(-1, 3)
        self.descriptors_ref = np.array(rows, dtype=np.uint8).reshape(-1, DESCRIPTOR_BYTES)

    def _pose_estimation_pnp(self) -> None:
        pts3d = np.array(
            [self.pts_3d_ref[m.query_idx] for m in self.feature_matches], dtype=float
        ).reshape(-1, 3)
        pts2d = np.array(
            [self.keypoints_curr[m.train_idx].pt for m in self.feature_matches], dtype=float
        ).reshape(-1, 2)

        if len(pts3d) < _MIN_PNP_POINTS:
            self.num_inliers = 0
            self.t_c_r_estimated = SE3()
            logger.info("pnp inliers: 0")
            return

        cam = self.ref.camera
        k = np.array([[cam.fx, 0.0, cam.cx], [0.0, cam.fy, cam.cy], [0.0, 0.0, 1.0]])
        result = solve_pnp_ransac(
            pts3d, pts2d, k, _PNP_ITERATIONS, _PNP_REPROJECTION_ERROR, _PNP_CONFIDENCE
        )
        self.num_inliers = result.num_inliers
        logger.info("pnp inliers: %d", self.num_inliers)
        self.t_c_r_estimated = result.pose

        vertex = PoseVertex(estimate=self.t_c_r_estimated, id=0)
        edges = [
            EdgeProjectXYZ2UVPoseOnly(
                pose=vertex,
                point=pts3d[index],
                camera=self.curr.camera,
                measurement=pts2d[index],
                information=np.eye(2),
                id=edge_id,
            )
            for edge_id, index in enumerate(result.inliers)
        ]
        optimize_pose(vertex, edges, _BA_ITERATIONS)
        self.t_c_r_estimated = vertex.estimate

    def _check_estimated_pose(self) -> bool:
        if self.num_inliers < self.min_inliers:
            logger.info("reject because inlier is too small: %d", self.num_inliers)
            return False
        motion = float(np.linalg.norm(self.t_c_r_estimated.log()))
        if motion > _MAX_MOTION:
            logger.info("reject because motion is too large: %f", motion)
            return False
        return True

    def _check_key_frame(self) -> bool:
        d = self.t_c_r_estimated.log()
        trans, rot = d[:3], d[3:]
        return bool(
            np.linalg.norm(rot) > self.key_frame_min_rot
            or np.linalg.norm(trans) > self.key_frame_min_trans
        )

    def _add_key_frame(self) -> None:
        logger.info("adding a key-frame")
        self.map.insert_key_frame(self.curr)