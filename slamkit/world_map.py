"""The map: all key-frames and landmarks, keyed by id."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from slamkit.frame import Frame
from slamkit.mappoint import MapPoint

logger = logging.getLogger(__name__)


@dataclass
class Map:
    """Key-frames and map points, each stored under its id."""

    map_points: dict[int, MapPoint] = field(default_factory=dict)
    keyframes: dict[int, Frame] = field(default_factory=dict)

    def insert_key_frame(self, frame: Frame) -> None:
        """Store a key-frame, replacing any earlier one with the same id."""
        logger.info("Key frame size = %d", len(self.keyframes))
        self.keyframes[frame.id] = frame

    def insert_map_point(self, map_point: MapPoint) -> None:
        """Store a landmark, replacing any earlier one with the same id."""
        self.map_points[map_point.id] = map_point