"""Camera frames: pose, colour and depth images, and depth lookup."""

from __future__ import annotations

import itertools
from dataclasses import dataclass, field
from typing import ClassVar, Iterator

import numpy as np

from slamkit.camera import Camera
from slamkit.geometry import SE3

# Neighbours searched when the depth under a keypoint is missing: left, up, right, down.
_NEIGHBOURS = ((-1, 0), (0, -1), (1, 0), (0, 1))


@dataclass
class KeyPoint:
    """An image feature location with its detector attributes."""

    x: float
    y: float
    size: float = 31.0
    angle: float = -1.0
    response: float = 0.0
    octave: int = 0

    @property
    def pt(self) -> tuple[float, float]:
        return (self.x, self.y)


@dataclass(eq=False)
class Frame:
    """One RGB-D capture with its estimated world-to-camera pose."""

    id: int = -1
    time_stamp: float = -1.0
    t_c_w: SE3 = field(default_factory=SE3)
    camera: Camera | None = None
    color: np.ndarray | None = None
    depth: np.ndarray | None = None
    is_key_frame: bool = False

    _ids: ClassVar[Iterator[int]] = itertools.count()

    @classmethod
    def create_frame(cls) -> "Frame":
        """Create an empty frame carrying the next id from the factory counter."""
        return cls(id=next(cls._ids), time_stamp=0.0)

    def _require_camera(self) -> Camera:
        if self.camera is None:
            raise ValueError("frame has no camera")
        return self.camera

    def find_depth(self, kp: KeyPoint) -> float:
        """Depth in metres under a keypoint, trying the 4 neighbours; -1.0 if none."""
        camera = self._require_camera()
        if self.depth is None:
            raise ValueError("frame has no depth image")
        x, y = round(kp.x), round(kp.y)
        rows, cols = self.depth.shape[:2]
        if not (0 <= x < cols and 0 <= y < rows):
            raise IndexError(f"keypoint ({kp.x}, {kp.y}) lies outside the depth image")
        candidates = [(x, y)] + [(x + dx, y + dy) for dx, dy in _NEIGHBOURS]
        for u, v in candidates:
            if 0 <= u < cols and 0 <= v < rows:
                d = int(self.depth[v, u])
                if d != 0:
                    return d / camera.depth_scale
        return -1.0

    def cam_center(self) -> np.ndarray:
        """Position of the camera centre in world coordinates."""
        return self.t_c_w.inverse().translation

    def set_pose(self, t_c_w: SE3) -> None:
        self.t_c_w = t_c_w

    def is_in_frame(self, pt_world) -> bool:
        """Whether a world point lies in front of the camera and inside the image."""
        camera = self._require_camera()
        p_cam = camera.world2camera(pt_world, self.t_c_w)
        if p_cam[2] < 0:
            return False
        u, v = camera.world2pixel(pt_world, self.t_c_w)
        rows, cols = self.color.shape[:2] if self.color is not None else (0, 0)
        return bool(u > 0 and v > 0 and u < cols and v < rows)