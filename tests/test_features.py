import numpy as np
import pytest

from slamkit.features import (
    DMatch,
    OrbExtractor,
    hamming_distance,
    match_descriptors,
)
from slamkit.frame import KeyPoint


def _squares_image(height=160, width=192, seed=3):
    rng = np.random.default_rng(seed)
    img = np.zeros((height, width), dtype=np.uint8)
    for top in range(0, height - 16, 32):
        for left in range(0, width - 16, 32):
            dy, dx = rng.integers(0, 16, 2)
            img[top + dy:top + dy + 12, left + dx:left + dx + 12] = rng.integers(120, 255)
    return img


def test_hamming_distance_counts_bits():
    assert hamming_distance(np.array([0xFF, 0x0F], np.uint8), np.zeros(2, np.uint8)) == 12


def test_hamming_distance_identity_and_symmetry():
    rng = np.random.default_rng(0)
    a = rng.integers(0, 256, 32, dtype=np.uint8)
    b = rng.integers(0, 256, 32, dtype=np.uint8)
    assert hamming_distance(a, a) == 0
    assert hamming_distance(a, b) == hamming_distance(b, a)


def test_hamming_distance_length_mismatch():
    with pytest.raises(ValueError):
        hamming_distance(np.zeros(2, np.uint8), np.zeros(3, np.uint8))


def test_match_descriptors_finds_permutation():
    rng = np.random.default_rng(5)
    train = rng.integers(0, 256, (12, 32), dtype=np.uint8)
    perm = rng.permutation(12)
    matches = match_descriptors(train[perm], train)
    assert [m.train_idx for m in matches] == perm.tolist()
    assert [m.query_idx for m in matches] == list(range(12))
    assert all(m.distance == 0.0 for m in matches)


def test_match_descriptors_empty_train():
    assert match_descriptors(np.zeros((3, 32), np.uint8), np.zeros((0, 32), np.uint8)) == []


def test_dmatch_fields():
    m = DMatch(query_idx=1, train_idx=2, distance=3.0)
    assert (m.query_idx, m.train_idx, m.distance) == (1, 2, 3.0)


def test_detect_respects_limits_and_bounds():
    img = _squares_image()
    keypoints = OrbExtractor(num_features=10).detect(img)
    assert 0 < len(keypoints) <= 10
    for kp in keypoints:
        assert 0 <= kp.x < img.shape[1] and 0 <= kp.y < img.shape[0]
        assert 0 <= kp.angle < 360


def test_detect_on_tiny_image_finds_nothing():
    assert OrbExtractor().detect(np.zeros((20, 20), np.uint8)) == []


def test_compute_shapes_and_determinism():
    img = _squares_image()
    orb = OrbExtractor()
    kps = orb.detect(img)
    kept, desc = orb.compute(img, kps)
    assert desc.shape == (len(kept), 32)
    assert desc.dtype == np.uint8
    _, again = orb.compute(img, kps)
    assert np.array_equal(desc, again)


def test_colour_and_gray_give_same_keypoints():
    gray = _squares_image()
    colour = np.stack([gray, gray, gray], axis=-1)
    orb = OrbExtractor()
    assert [kp.pt for kp in orb.detect(gray)] == [kp.pt for kp in orb.detect(colour)]


def test_descriptors_follow_integer_shift():
    img = _squares_image()
    orb = OrbExtractor()
    kps = [
        kp for kp in orb.detect(img)
        if kp.octave == 0 and kp.x < img.shape[1] - 40 and kp.y < img.shape[0] - 40
    ]
    assert kps
    shifted = np.pad(img, ((4, 0), (4, 0)))[: img.shape[0], : img.shape[1]]
    moved = [KeyPoint(kp.x + 4, kp.y + 4, angle=kp.angle, octave=0) for kp in kps]
    _, original = orb.compute(img, kps)
    kept, after = orb.compute(shifted, moved)
    assert len(kept) == len(kps)
    assert np.array_equal(original, after)


def test_compute_drops_border_keypoints():
    img = _squares_image()
    kept, desc = OrbExtractor().compute(img, [KeyPoint(2.0, 2.0)])
    assert kept == [] and desc.shape == (0, 32)


def test_compute_rejects_bad_octave():
    with pytest.raises(ValueError):
        OrbExtractor(num_levels=2).compute(_squares_image(), [KeyPoint(80.0, 80.0, octave=5)])


@pytest.mark.parametrize(
    "kwargs", [{"scale_factor": 1.0}, {"num_levels": 0}, {"edge_threshold": 5}]
)
def test_invalid_parameters(kwargs):
    with pytest.raises(ValueError):
        OrbExtractor(**kwargs)