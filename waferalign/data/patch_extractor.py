"""Extraction of square patches with enough contrast from a grayscale image."""

from __future__ import annotations

import random
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable

import numpy as np
from PIL import Image

DEFAULT_VARIANCE_THRESHOLD = 100.0


@dataclass
class Patch:
    """A patch cut from a source image, with the centre it was cut at."""

    image: np.ndarray
    center_x: int
    center_y: int


def _as_gray(image) -> np.ndarray:
    array = np.asarray(image)
    if array.ndim != 2:
        raise ValueError("expected a two-dimensional grayscale image")
    return array.astype(np.uint8, copy=False)


def extract_patch(source_image, center_x: int, center_y: int, patch_size: int) -> np.ndarray:
    """Return the ``patch_size`` square around the given centre."""
    image = _as_gray(source_image)
    height, width = image.shape
    half = patch_size // 2

    if center_x < half or center_y < half:
        raise ValueError("Patch center too close to image edge")
    if center_x + half >= width or center_y + half >= height:
        raise ValueError("Patch extends beyond image bounds")

    start_x = center_x - half
    start_y = center_y - half
    return image[start_y : start_y + patch_size, start_x : start_x + patch_size].copy()


def calculate_variance(image) -> float:
    """Population variance of pixel intensities."""
    return float(np.var(np.asarray(image, dtype=np.float64)))


def extract_good_patches(
    source_image,
    patch_size: int,
    count: int,
    min_variance: float = DEFAULT_VARIANCE_THRESHOLD,
    rng: random.Random | None = None,
) -> list[Patch]:
    """Pick random patches whose variance exceeds ``min_variance``.

    Makes up to ten attempts per requested patch and raises ValueError if
    none qualifies.
    """
    image = _as_gray(source_image)
    height, width = image.shape
    if patch_size >= width or patch_size >= height:
        raise ValueError("Patch size exceeds image dimensions")
    rng = rng if rng is not None else random.Random()

    half = patch_size // 2
    patches: list[Patch] = []
    for _ in range(count * 10):
        if len(patches) >= count:
            break
        center_x = half + rng.randrange(width - patch_size)
        center_y = half + rng.randrange(height - patch_size)
        try:
            patch = extract_patch(image, center_x, center_y, patch_size)
        except ValueError:
            continue
        if calculate_variance(patch) > min_variance:
            patches.append(Patch(patch, center_x, center_y))

    if not patches:
        raise ValueError("Could not find any good patches in the image")
    return patches


def save_patches(patches: Iterable[Patch], base_name: str, output_dir: Path | str) -> list[Path]:
    """Write each patch as PNG named after its index and centre; return the paths."""
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    saved: list[Path] = []
    for index, patch in enumerate(patches):
        path = output_dir / f"{base_name}_patch_{index:02d}_at_{patch.center_x}x{patch.center_y}.png"
        Image.fromarray(np.asarray(patch.image, dtype=np.uint8)).save(path)
        saved.append(path)
    return saved