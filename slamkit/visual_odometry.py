"""Frame-to-map visual odometry for RGB-D sequences."""

from __future__ import annotations

import enum
import logging
import math
import time
from dataclasses import dataclass, field

import numpy as np

from slamkit.config import Config
from slamkit.edges import EdgeProjectXYZ2UVPoseOnly, PoseVertex
from slamkit.features import DESCRIPTOR_BYTES, OrbExtractor, match_descriptors
from slamkit.frame import Frame
from slamkit.geometry import SE3
from slamkit.mappoint import MapPoint
from slamkit.optimizer import optimize_pose
from slamkit.pnp import solve_pnp_ransac
from slamkit.world_map import Map

logger = logging.getLogger(__name__)

_MIN_MATCH_DISTANCE = 30.0
_MAX_MOTION = 5.0
_MAX_VIEW_ANGLE = math.pi / 6.0
_MIN_PNP_POINTS = 6
_PNP_ITERATIONS = 100
_PNP_REPROJECTION_ERROR = 4.0
_PNP_CONFIDENCE = 0.99
_BA_ITERATIONS = 10
_FEW_MATCHES = 100
_LARGE_MAP = 1000
_ERASE_RATIO_STEP = 0.05
_DEFAULT_ERASE_RATIO = 0.1


class VOState(enum.IntEnum):
    """Tracking status of the odometry."""

    INITIALIZING = -1
    OK = 0
    LOST = 1


def _normalized(v: np.ndarray) -> np.ndarray:
    norm = float(np.linalg.norm(v))
    return v / norm if norm > 0.0 else v


def _empty_descriptors() -> np.ndarray:
    return np.zeros((0, DESCRIPTOR_BYTES), dtype=np.uint8)


@dataclass(eq=False)
class VisualOdometry:
    """Tracks frames against a map of landmarks and grows the map with key-frames."""

    num_of_features: int = 500
    scale_factor: float = 1.2
    level_pyramid: int = 4
    match_ratio: float = 2.0
    max_num_lost: int = 10
    min_inliers: int = 10
    key_frame_min_rot: float = 0.1
    key_frame_min_trans: float = 0.1
    map_point_erase_ratio: float = _DEFAULT_ERASE_RATIO

    state: VOState = field(init=False, default=VOState.INITIALIZING)
    map: Map = field(init=False, default_factory=Map)
    ref: Frame | None = field(init=False, default=None)
    curr: Frame | None = field(init=False, default=None)
    keypoints_curr: list = field(init=False, default_factory=list)
    descriptors_curr: np.ndarray = field(init=False, default_factory=_empty_descriptors)
    match_3dpts: list[MapPoint] = field(init=False, default_factory=list)
    match_2dkp_index: list[int] = field(init=False, default_factory=list)
    t_c_w_estimated: SE3 = field(init=False, default_factory=SE3)
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
    def from_config(cls) -> "VisualOdometry":
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
            self._extract_key_points()
            self._compute_descriptors()
            self._add_key_frame()
        elif self.state is VOState.OK:
            self.curr = frame
            frame.t_c_w = self.ref.t_c_w
            self._extract_key_points()
            self._compute_descriptors()
            self._feature_matching()
            self._pose_estimation_pnp()
            if not self._check_estimated_pose():
                self.num_lost += 1
                if self.num_lost > self.max_num_lost:
                    self.state = VOState.LOST
                return False
            frame.t_c_w = self.t_c_w_estimated
            self._optimize_map()
            self.num_lost = 0
            if self._check_key_frame():
                self._add_key_frame()
        else:
            logger.info("vo has lost.")
        return True

    def view_angle(self, frame: Frame, point: MapPoint) -> float:
        """Angle between the point's stored viewing direction and the one from ``frame``."""
        n = _normalized(point.pos - frame.cam_center())
        return math.acos(float(np.clip(n @ point.norm, -1.0, 1.0)))

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
        candidates: list[MapPoint] = []
        for point in self.map.map_points.values():
            if point.descriptor is not None and self.curr.is_in_frame(point.pos):
                point.visible_times += 1
                candidates.append(point)

        self.match_3dpts = []
        self.match_2dkp_index = []
        if candidates:
            desp_map = np.vstack([np.asarray(p.descriptor).reshape(1, -1) for p in candidates])
            matches = match_descriptors(desp_map, self.descriptors_curr)
            if matches:
                min_dis = min(m.distance for m in matches)
                limit = max(min_dis * self.match_ratio, _MIN_MATCH_DISTANCE)
                for m in matches:
                    if m.distance < limit:
                        self.match_3dpts.append(candidates[m.query_idx])
                        self.match_2dkp_index.append(m.train_idx)
        logger.info("good matches: %d", len(self.match_3dpts))
        logger.debug("match cost time: %f", time.perf_counter() - start)

    def _pose_estimation_pnp(self) -> None:
        pts2d = np.array(
            [self.keypoints_curr[i].pt for i in self.match_2dkp_index], dtype=float
        ).reshape(-1, 2)
        pts3d = np.array([p.pos for p in self.match_3dpts], dtype=float).reshape(-1, 3)

        if len(pts3d) < _MIN_PNP_POINTS:
            self.num_inliers = 0
            self.t_c_w_estimated = self.ref.t_c_w
            logger.info("pnp inliers: 0")
            return

        cam = self.ref.camera
        k = np.array([[cam.fx, 0.0, cam.cx], [0.0, cam.fy, cam.cy], [0.0, 0.0, 1.0]])
        result = solve_pnp_ransac(
            pts3d, pts2d, k, _PNP_ITERATIONS, _PNP_REPROJECTION_ERROR, _PNP_CONFIDENCE
        )
        self.num_inliers = result.num_inliers
        logger.info("pnp inliers: %d", self.num_inliers)
        self.t_c_w_estimated = result.pose

        vertex = PoseVertex(estimate=self.t_c_w_estimated, id=0)
        edges = []
        for edge_id, index in enumerate(result.inliers):
            edges.append(
                EdgeProjectXYZ2UVPoseOnly(
                    pose=vertex,
                    point=pts3d[index],
                    camera=self.curr.camera,
                    measurement=pts2d[index],
                    information=np.eye(2),
                    id=edge_id,
                )
            )
            self.match_3dpts[index].matched_times += 1
        optimize_pose(vertex, edges, _BA_ITERATIONS)
        self.t_c_w_estimated = vertex.estimate
        logger.debug("T_c_w_estimated:\n%s", self.t_c_w_estimated.matrix())

    def _relative_motion(self) -> np.ndarray:
        return (self.ref.t_c_w @ self.t_c_w_estimated.inverse()).log()

    def _check_estimated_pose(self) -> bool:
        if self.num_inliers < self.min_inliers:
            logger.info("reject because inlier is too small: %d", self.num_inliers)
            return False
        motion = float(np.linalg.norm(self._relative_motion()))
        if motion > _MAX_MOTION:
            logger.info("reject because motion is too large: %f", motion)
            return False
        return True

    def _check_key_frame(self) -> bool:
        d = self._relative_motion()
        trans, rot = d[:3], d[3:]
        return bool(
            np.linalg.norm(rot) > self.key_frame_min_rot
            or np.linalg.norm(trans) > self.key_frame_min_trans
        )

    def _insert_point_for(self, index: int, depth_frame: Frame) -> None:
        kp = self.keypoints_curr[index]
        d = depth_frame.find_depth(kp)
        if d < 0:
            return
        p_world = self.ref.camera.pixel2world((kp.x, kp.y), self.curr.t_c_w, d)
        n = _normalized(p_world - self.ref.cam_center())
        self.map.insert_map_point(
            MapPoint.create_map_point(
                p_world, n, np.array(self.descriptors_curr[index]), self.curr
            )
        )

    def _add_key_frame(self) -> None:
        if not self.map.keyframes:
            for index in range(len(self.keypoints_curr)):
                self._insert_point_for(index, self.curr)
        self.map.insert_key_frame(self.curr)
        self.ref = self.curr

    def _add_map_points(self) -> None:
        matched = set(self.match_2dkp_index)
        for index in range(len(self.keypoints_curr)):
            if index not in matched:
                self._insert_point_for(index, self.ref)

    def _optimize_map(self) -> None:
        for point_id, point in list(self.map.map_points.items()):
            if not self.curr.is_in_frame(point.pos):
                del self.map.map_points[point_id]
                continue
            ratio = (
                point.matched_times / point.visible_times if point.visible_times else 0.0
            )
            if ratio < self.map_point_erase_ratio:
                del self.map.map_points[point_id]
                continue
            if self.view_angle(self.curr, point) > _MAX_VIEW_ANGLE:
                del self.map.map_points[point_id]

        if len(self.match_2dkp_index) < _FEW_MATCHES:
            self._add_map_points()
        if len(self.map.map_points) > _LARGE_MAP:
            self.map_point_erase_ratio += _ERASE_RATIO_STEP
        else:
            self.map_point_erase_ratio = _DEFAULT_ERASE_RATIO
        logger.info("map points: %d", len(self.map.map_points))