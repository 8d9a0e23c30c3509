import random

import numpy as np
import pytest
from PIL import Image

from waferalign.data.patch_extractor import (
    Patch,
    calculate_variance,
    extract_good_patches,
    extract_patch,
    save_patches,
)


@pytest.fixture
def noisy():
    rng = np.random.default_rng(3)
    return rng.integers(0, 256, size=(100, 120), dtype=np.uint8)


def test_extract_patch_matches_slice(noisy):
    patch = extract_patch(noisy, 40, 30, 16)
    assert patch.shape == (16, 16)
    assert np.array_equal(patch, noisy[22:38, 32:48])


def test_extract_patch_too_close_to_edge(noisy):
    with pytest.raises(ValueError, match="too close"):
        extract_patch(noisy, 5, 50, 16)


def test_extract_patch_beyond_bounds(noisy):
    with pytest.raises(ValueError, match="beyond"):
        extract_patch(noisy, 112, 50, 16)


def test_variance_of_constant_is_zero():
    assert calculate_variance(np.full((8, 8), 200, dtype=np.uint8)) == 0.0


def test_variance_of_two_levels():
    image = np.zeros((4, 4), dtype=np.uint8)
    image[:2, :] = 10
    assert calculate_variance(image) == pytest.approx(25.0)


def test_extract_good_patches(noisy):
    patches = extract_good_patches(noisy, 32, 3, rng=random.Random(1))
    assert 1 <= len(patches) <= 3
    for patch in patches:
        assert np.array_equal(patch.image, extract_patch(noisy, patch.center_x, patch.center_y, 32))
        assert calculate_variance(patch.image) > 100.0


def test_extract_good_patches_is_reproducible_with_seed(noisy):
    first = extract_good_patches(noisy, 32, 2, rng=random.Random(5))
    second = extract_good_patches(noisy, 32, 2, rng=random.Random(5))
    assert [(p.center_x, p.center_y) for p in first] == [(p.center_x, p.center_y) for p in second]


def test_flat_image_has_no_good_patches():
    flat = np.full((64, 64), 128, dtype=np.uint8)
    with pytest.raises(ValueError, match="Could not find"):
        extract_good_patches(flat, 16, 3, rng=random.Random(0))


def test_patch_larger_than_image_rejected(noisy):
    with pytest.raises(ValueError):
        extract_good_patches(noisy, 200, 1)


def test_save_patches_round_trip(tmp_path, noisy):
    patches = [Patch(extract_patch(noisy, 40, 30, 16), 40, 30), Patch(noisy[:8, :8].copy(), 4, 4)]
    paths = save_patches(patches, "wafer", tmp_path / "out")
    assert [p.name for p in paths] == ["wafer_patch_00_at_40x30.png", "wafer_patch_01_at_4x4.png"]
    for path, patch in zip(paths, patches):
        assert np.array_equal(np.asarray(Image.open(path)), patch.image)