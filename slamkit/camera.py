"""Pinhole RGB-D camera model and coordinate conversions."""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from slamkit.config import Config
from slamkit.geometry import SE3


@dataclass
class Camera:
    """Pinhole camera intrinsics with a depth-image scale factor."""

    fx: float
    fy: float
    cx: float
    cy: float
    depth_scale: float = 0.0

    @classmethod
    def from_config(cls) -> "Camera":
        """Build a camera from the ``camera.*`` entries of the global config."""
        return cls(
            fx=float(Config.get("camera.fx")),
            fy=float(Config.get("camera.fy")),
            cx=float(Config.get("camera.cx")),
            cy=float(Config.get("camera.cy")),
            depth_scale=float(Config.get("camera.depth_scale")),
        )

    def world2camera(self, p_w, t_c_w: SE3) -> np.ndarray:
        return t_c_w.act(p_w)

    def camera2world(self, p_c, t_c_w: SE3) -> np.ndarray:
        return t_c_w.inverse().act(p_c)

    def camera2pixel(self, p_c) -> np.ndarray:
        x, y, z = np.asarray(p_c, dtype=np.float64).reshape(3)
        with np.errstate(divide="ignore", invalid="ignore"):
            return np.array([self.fx * x / z + self.cx, self.fy * y / z + self.cy])

    def pixel2camera(self, p_p, depth: float = 1.0) -> np.ndarray:
        u, v = np.asarray(p_p, dtype=float).reshape(2)
        return np.array(
            [(u - self.cx) * depth / self.fx, (v - self.cy) * depth / self.fy, depth]
        )

    def pixel2world(self, p_p, t_c_w: SE3, depth: float = 1.0) -> np.ndarray:
        return self.camera2world(self.pixel2camera(p_p, depth), t_c_w)

    def world2pixel(self, p_w, t_c_w: SE3) -> np.ndarray:
        return self.camera2pixel(self.world2camera(p_w, t_c_w))