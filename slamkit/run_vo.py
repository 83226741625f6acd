"""Command that runs visual odometry over an RGB-D dataset."""

from __future__ import annotations

import sys
import time
from dataclasses import dataclass
from pathlib import Path

import numpy as np
from PIL import Image

from slamkit.camera import Camera
from slamkit.config import Config
from slamkit.frame import Frame
from slamkit.visual_odometry import VisualOdometry, VOState

ASSOCIATION_FILE = "associate.txt"


@dataclass(frozen=True)
class Association:
    """A colour image and a depth image recorded at about the same time."""

    rgb_time: float
    rgb_file: Path
    depth_time: float
    depth_file: Path


def read_associations(dataset_dir) -> list[Association]:
    """Parse ``associate.txt`` of a dataset: rgb time, rgb file, depth time, depth file."""
    base = Path(dataset_dir)
    path = base / ASSOCIATION_FILE
    if not path.is_file():
        raise FileNotFoundError("please generate the associate file called associate.txt!")
    tokens = path.read_text(encoding="utf-8").split()
    entries = []
    for start in range(0, len(tokens) - 3, 4):
        rgb_time, rgb_file, depth_time, depth_file = tokens[start:start + 4]
        entries.append(
            Association(
                rgb_time=float(rgb_time),
                rgb_file=base / rgb_file,
                depth_time=float(depth_time),
                depth_file=base / depth_file,
            )
        )
    return entries


def _load_image(path: Path, mode: str | None = None) -> np.ndarray | None:
    try:
        with Image.open(path) as img:
            if mode is not None:
                img = img.convert(mode)
            return np.array(img)
    except OSError:
        return None


def main(argv=None) -> int:
    args = sys.argv[1:] if argv is None else list(argv)
    if len(args) != 1:
        print("usage: run_vo parameter_file")
        return 1

    try:
        Config.set_parameter_file(args[0])
    except FileNotFoundError as exc:
        print(exc, file=sys.stderr)
        return 1
    vo = VisualOdometry.from_config()

    dataset_dir = str(Config.get("dataset_dir"))
    print(f"dataset: {dataset_dir}")
    try:
        associations = read_associations(dataset_dir)
    except FileNotFoundError as exc:
        print(exc)
        return 1

    camera = Camera.from_config()
    print(f"read total {len(associations)} entries")
    for i, entry in enumerate(associations):
        print(f"****** loop {i} ******")
        color = _load_image(entry.rgb_file, "RGB")
        depth = _load_image(entry.depth_file)
        if color is None or depth is None:
            break
        frame = Frame.create_frame()
        frame.camera = camera
        frame.color = color
        frame.depth = depth
        frame.time_stamp = entry.rgb_time

        start = time.perf_counter()
        vo.add_frame(frame)
        print(f"VO costs time: {time.perf_counter() - start}")

        if vo.state is VOState.LOST:
            break
        t_w_c = frame.t_c_w.inverse()
        position = " ".join(f"{value:.6f}" for value in t_w_c.translation)
        visible = sum(
            1 for point in vo.map.map_points.values() if frame.is_in_frame(point.pos)
        )
        print(f"camera position: {position}")
        print(f"visible map points: {visible}")
        print()
    return 0


if __name__ == "__main__":
    sys.exit(main())