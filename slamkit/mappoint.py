"""Landmarks: 3D points in the world with descriptors and statistics."""

from __future__ import annotations

import itertools
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, ClassVar, Iterator

import numpy as np

if TYPE_CHECKING:
    from slamkit.frame import Frame


def _vector3(value, name: str) -> np.ndarray:
    vec = np.array(value, dtype=float).reshape(-1)
    if vec.shape != (3,):
        raise ValueError(f"{name} must have exactly 3 components, got shape {vec.shape}")
    return vec


@dataclass(eq=False)
class MapPoint:
    """A landmark with its world position, viewing direction and descriptor."""

    id: int = -1
    pos: np.ndarray = field(default_factory=lambda: np.zeros(3))
    norm: np.ndarray = field(default_factory=lambda: np.zeros(3))
    good: bool = True
    descriptor: np.ndarray | None = None
    observed_frames: list = field(default_factory=list)
    matched_times: int = 0
    visible_times: int = 0

    _ids: ClassVar[Iterator[int]] = itertools.count()

    def __post_init__(self) -> None:
        self.pos = _vector3(self.pos, "pos")
        self.norm = _vector3(self.norm, "norm")

    @classmethod
    def create_map_point(
        cls,
        pos_world=None,
        norm=None,
        descriptor: np.ndarray | None = None,
        frame: "Frame | None" = None,
    ) -> "MapPoint":
        """Create a landmark with the next factory id, seen and matched once."""
        return cls(
            id=next(cls._ids),
            pos=np.zeros(3) if pos_world is None else pos_world,
            norm=np.zeros(3) if norm is None else norm,
            descriptor=descriptor,
            observed_frames=[] if frame is None else [frame],
            matched_times=1,
            visible_times=1,
        )