"""Oriented FAST keypoints, rotated BRIEF descriptors and Hamming matching."""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, replace

import numpy as np
from PIL import Image

from slamkit.frame import KeyPoint

DESCRIPTOR_BYTES = 32
_HARRIS_K = 0.04
_ORIENTATION_RADIUS = 15
_PATTERN_LIMIT = 13
_MIN_EDGE_THRESHOLD = 19  # ceil(_PATTERN_LIMIT * sqrt(2)) + 1

# Bresenham circle of radius 3 as (dx, dy), in order around the centre.
_CIRCLE = (
    (0, 3), (1, 3), (2, 2), (3, 1), (3, 0), (3, -1), (2, -2), (1, -3),
    (0, -3), (-1, -3), (-2, -2), (-3, -1), (-3, 0), (-3, 1), (-2, 2), (-1, 3),
)

_grid = np.arange(-_ORIENTATION_RADIUS, _ORIENTATION_RADIUS + 1)
_gx, _gy = np.meshgrid(_grid, _grid)
_inside = _gx**2 + _gy**2 <= _ORIENTATION_RADIUS**2
_PATCH_DX = _gx[_inside]
_PATCH_DY = _gy[_inside]

# Test pairs (x1, y1, x2, y2) drawn once from a fixed-seed isotropic Gaussian.
_PATTERN = np.clip(
    np.rint(np.random.default_rng(20161).normal(0.0, 31 / 5, (8 * DESCRIPTOR_BYTES, 4))),
    -_PATTERN_LIMIT,
    _PATTERN_LIMIT,
)

_POPCOUNT = np.unpackbits(np.arange(256, dtype=np.uint8)[:, None], axis=1).sum(axis=1)

_gauss = np.exp(-(np.arange(-3, 4) ** 2) / 8.0)
_GAUSS_7 = _gauss / _gauss.sum()


@dataclass(frozen=True)
class DMatch:
    """A descriptor match between a query row and a train row."""

    query_idx: int
    train_idx: int
    distance: float


def _correlate(a: np.ndarray, kernel, axis: int) -> np.ndarray:
    r = len(kernel) // 2
    pad = [(0, 0), (0, 0)]
    pad[axis] = (r, r)
    padded = np.pad(a, pad, mode="reflect")
    length = a.shape[axis]
    out = np.zeros_like(a, dtype=float)
    for offset, weight in enumerate(kernel):
        window = padded[:, offset:offset + length] if axis == 1 else padded[offset:offset + length, :]
        out += weight * window
    return out


def _separable(a: np.ndarray, kx, ky) -> np.ndarray:
    return _correlate(_correlate(a, kx, 1), ky, 0)


def _to_gray(image) -> np.ndarray:
    img = np.asarray(image)
    if img.ndim == 3:
        img = img[..., :3].astype(float) @ np.array([0.299, 0.587, 0.114])
    elif img.ndim != 2:
        raise ValueError(f"image must be 2-D or 3-D, got shape {img.shape}")
    return np.clip(np.rint(img), 0, 255).astype(np.uint8)


def _fast_mask(img: np.ndarray, threshold: int, border: int) -> np.ndarray:
    img16 = img.astype(np.int16)
    h, w = img16.shape
    centre = img16[border:h - border, border:w - border]
    ring = np.stack(
        [img16[border + dy:h - border + dy, border + dx:w - border + dx] for dx, dy in _CIRCLE]
    )

    def has_arc(flags: np.ndarray) -> np.ndarray:
        extended = np.concatenate([flags, flags[:8]])
        found = np.zeros(flags.shape[1:], dtype=bool)
        for start in range(len(_CIRCLE)):
            found |= np.all(extended[start:start + 9], axis=0)
        return found

    corners = has_arc(ring > centre + threshold) | has_arc(ring < centre - threshold)
    mask = np.zeros((h, w), dtype=bool)
    mask[border:h - border, border:w - border] = corners
    return mask


def _harris(img: np.ndarray) -> np.ndarray:
    ix = _separable(img, [-1.0, 0.0, 1.0], [1.0, 2.0, 1.0])
    iy = _separable(img, [1.0, 2.0, 1.0], [-1.0, 0.0, 1.0])
    box = np.ones(7)
    sxx = _separable(ix * ix, box, box)
    syy = _separable(iy * iy, box, box)
    sxy = _separable(ix * iy, box, box)
    return sxx * syy - sxy * sxy - _HARRIS_K * (sxx + syy) ** 2


def _max3x3(a: np.ndarray) -> np.ndarray:
    padded = np.pad(a, 1, constant_values=-np.inf)
    h, w = a.shape
    return np.max(
        np.stack([padded[dy:dy + h, dx:dx + w] for dy in range(3) for dx in range(3)]), axis=0
    )


def _orientation(img: np.ndarray, xs: np.ndarray, ys: np.ndarray) -> np.ndarray:
    values = img[ys[:, None] + _PATCH_DY, xs[:, None] + _PATCH_DX].astype(float)
    angles = np.degrees(np.arctan2(values @ _PATCH_DY, values @ _PATCH_DX)) % 360.0
    return np.where(angles >= 360.0, 0.0, angles)


def _describe(blurred: np.ndarray, xs, ys, angles) -> np.ndarray:
    rad = np.radians(angles)[:, None]
    cos, sin = np.cos(rad), np.sin(rad)
    ax, ay, bx, by = _PATTERN.T

    def sample(px, py):
        rx = np.rint(px * cos - py * sin).astype(int)
        ry = np.rint(px * sin + py * cos).astype(int)
        return blurred[ys[:, None] + ry, xs[:, None] + rx]

    bits = sample(ax, ay) < sample(bx, by)
    return np.packbits(bits, axis=1, bitorder="little")


@dataclass
class OrbExtractor:
    """Multi-scale oriented FAST detector with rotated BRIEF descriptors."""

    num_features: int = 500
    scale_factor: float = 1.2
    num_levels: int = 8
    edge_threshold: int = 31
    fast_threshold: int = 20
    patch_size: int = 31

    def __post_init__(self) -> None:
        if self.num_features < 0:
            raise ValueError("num_features must not be negative")
        if self.scale_factor <= 1.0:
            raise ValueError("scale_factor must be greater than 1")
        if self.num_levels < 1:
            raise ValueError("num_levels must be at least 1")
        if self.edge_threshold < _MIN_EDGE_THRESHOLD:
            raise ValueError(f"edge_threshold must be at least {_MIN_EDGE_THRESHOLD}")

    def _features_per_level(self) -> list[int]:
        factor = 1.0 / self.scale_factor
        per_level = self.num_features * (1 - factor) / (1 - factor**self.num_levels)
        counts = []
        for level in range(self.num_levels - 1):
            counts.append(int(round(per_level * factor**level)))
        counts.append(max(self.num_features - sum(counts), 0))
        return counts

    def _level_image(self, gray: np.ndarray, level: int) -> np.ndarray:
        if level == 0:
            return gray
        scale = self.scale_factor**level
        h, w = gray.shape
        size = (int(round(w / scale)), int(round(h / scale)))
        if size[0] < 1 or size[1] < 1:
            return np.zeros((0, 0), dtype=np.uint8)
        return np.asarray(Image.fromarray(gray).resize(size, resample=Image.BILINEAR))

    def _level_keypoints(self, img: np.ndarray, limit: int):
        border = self.edge_threshold
        h, w = img.shape
        empty = (np.zeros(0, int), np.zeros(0, int), np.zeros(0))
        if limit <= 0 or h <= 2 * border or w <= 2 * border:
            return empty
        mask = _fast_mask(img, self.fast_threshold, border)
        if not mask.any():
            return empty
        response = _harris(img.astype(float))
        scored = np.where(mask, response, -np.inf)
        keep = mask & (scored >= _max3x3(scored))
        ys, xs = np.nonzero(keep)
        order = np.argsort(-response[ys, xs], kind="stable")[:limit]
        xs, ys = xs[order], ys[order]
        return xs, ys, response[ys, xs]

    def detect(self, image) -> list[KeyPoint]:
        """Find up to ``num_features`` keypoints across the image pyramid."""
        gray = _to_gray(image)
        keypoints: list[KeyPoint] = []
        for level, limit in enumerate(self._features_per_level()):
            img = self._level_image(gray, level)
            xs, ys, responses = self._level_keypoints(img, limit)
            if len(xs) == 0:
                continue
            angles = _orientation(img, xs, ys)
            scale = self.scale_factor**level
            keypoints.extend(
                KeyPoint(
                    x=float(x * scale),
                    y=float(y * scale),
                    size=self.patch_size * scale,
                    angle=float(angle),
                    response=float(response),
                    octave=level,
                )
                for x, y, angle, response in zip(xs, ys, angles, responses)
            )
        return keypoints

    def compute(self, image, keypoints) -> tuple[list[KeyPoint], np.ndarray]:
        """Descriptors for the keypoints; those too near the border are dropped."""
        gray = _to_gray(image)
        levels: dict[int, np.ndarray] = {}
        margin = self.edge_threshold
        accepted: list[tuple[KeyPoint, int, int]] = []
        for kp in keypoints:
            if not 0 <= kp.octave < self.num_levels:
                raise ValueError(f"keypoint octave {kp.octave} outside the pyramid")
            if kp.octave not in levels:
                levels[kp.octave] = self._level_image(gray, kp.octave)
            h, w = levels[kp.octave].shape
            scale = self.scale_factor**kp.octave
            px, py = int(round(kp.x / scale)), int(round(kp.y / scale))
            if margin <= px < w - margin and margin <= py < h - margin:
                accepted.append((kp, px, py))

        descriptors = np.zeros((len(accepted), DESCRIPTOR_BYTES), dtype=np.uint8)
        kept: list[KeyPoint] = [kp for kp, _, _ in accepted]
        by_level: dict[int, list[int]] = defaultdict(list)
        for position, (kp, _, _) in enumerate(accepted):
            by_level[kp.octave].append(position)

        for level, positions in by_level.items():
            img = levels[level]
            xs = np.array([accepted[p][1] for p in positions])
            ys = np.array([accepted[p][2] for p in positions])
            angles = np.array([accepted[p][0].angle for p in positions], dtype=float)
            missing = angles < 0
            if missing.any():
                angles[missing] = _orientation(img, xs[missing], ys[missing])
            blurred = _separable(img.astype(float), _GAUSS_7, _GAUSS_7)
            descriptors[positions] = _describe(blurred, xs, ys, angles)
            for position, angle in zip(positions, angles):
                kept[position] = replace(kept[position], angle=float(angle))
        return kept, descriptors


def hamming_distance(a, b) -> int:
    """Number of differing bits between two byte descriptors."""
    x = np.asarray(a, dtype=np.uint8).reshape(-1)
    y = np.asarray(b, dtype=np.uint8).reshape(-1)
    if x.shape != y.shape:
        raise ValueError("descriptors must have the same length")
    return int(_POPCOUNT[np.bitwise_xor(x, y)].sum())


def match_descriptors(query, train) -> list[DMatch]:
    """Best train row for every query row by Hamming distance."""
    q = np.asarray(query, dtype=np.uint8)
    t = np.asarray(train, dtype=np.uint8)
    if q.size == 0 or t.size == 0:
        return []
    if q.ndim != 2 or t.ndim != 2 or q.shape[1] != t.shape[1]:
        raise ValueError("descriptor sets must be 2-D with equal row lengths")
    distances = _POPCOUNT[np.bitwise_xor(q[:, None, :], t[None, :, :])].sum(axis=2)
    best = distances.argmin(axis=1)
    return [
        DMatch(query_idx=i, train_idx=int(j), distance=float(distances[i, j]))
        for i, j in enumerate(best)
    ]