"""Geometric transformations of grayscale images and ground-truth descriptions."""

from __future__ import annotations

import math
from dataclasses import dataclass

import numpy as np


def _as_gray(image) -> np.ndarray:
    array = np.asarray(image)
    if array.ndim != 2:
        raise ValueError("expected a two-dimensional grayscale image")
    return array.astype(np.uint8, copy=False)


def _bilinear_sample(image: np.ndarray, xs: np.ndarray, ys: np.ndarray) -> np.ndarray:
    """Sample ``image`` at float coordinates; out-of-range samples are black."""
    height, width = image.shape
    inside = (
        np.isfinite(xs)
        & np.isfinite(ys)
        & (xs >= 0.0)
        & (ys >= 0.0)
        & (xs < width)
        & (ys < height)
    )
    safe_x = np.where(inside, xs, 0.0)
    safe_y = np.where(inside, ys, 0.0)

    x1 = np.floor(safe_x).astype(np.intp)
    y1 = np.floor(safe_y).astype(np.intp)
    x2 = np.minimum(x1 + 1, width - 1)
    y2 = np.minimum(y1 + 1, height - 1)
    fx = safe_x - x1
    fy = safe_y - y1

    pixels = image.astype(np.float64)
    p11 = pixels[y1, x1]
    p12 = pixels[y2, x1]
    p21 = pixels[y1, x2]
    p22 = pixels[y2, x2]

    value = (
        p11 * (1.0 - fx) * (1.0 - fy)
        + p21 * fx * (1.0 - fy)
        + p12 * (1.0 - fx) * fy
        + p22 * fx * fy
    )
    rounded = np.clip(np.floor(value + 0.5), 0, 255).astype(np.uint8)
    return np.where(inside, rounded, np.uint8(0)).astype(np.uint8)


def _grid(image: np.ndarray) -> tuple[np.ndarray, np.ndarray, float, float]:
    height, width = image.shape
    ys, xs = np.mgrid[0:height, 0:width].astype(np.float64)
    return xs, ys, width / 2.0, height / 2.0


def rotate(image, angle_degrees: float) -> np.ndarray:
    """Rotate about the image centre by ``angle_degrees``, keeping the size."""
    image = _as_gray(image)
    angle = math.radians(angle_degrees)
    cos_a, sin_a = math.cos(angle), math.sin(angle)
    xs, ys, cx, cy = _grid(image)
    xc = xs - cx
    yc = ys - cy
    src_x = xc * cos_a + yc * sin_a + cx
    src_y = -xc * sin_a + yc * cos_a + cy
    return _bilinear_sample(image, src_x, src_y)


def translate(image, dx: int, dy: int) -> np.ndarray:
    """Shift by whole pixels; uncovered pixels become black."""
    image = _as_gray(image)
    height, width = image.shape
    result = np.zeros_like(image)
    dx, dy = int(dx), int(dy)
    if abs(dx) >= width or abs(dy) >= height:
        return result
    dst_x = slice(max(dx, 0), width + min(dx, 0))
    dst_y = slice(max(dy, 0), height + min(dy, 0))
    src_x = slice(max(-dx, 0), width + min(-dx, 0))
    src_y = slice(max(-dy, 0), height + min(-dy, 0))
    result[dst_y, dst_x] = image[src_y, src_x]
    return result


def scale(image, scale_factor: float) -> np.ndarray:
    """Zoom about the image centre by ``scale_factor``, keeping the size."""
    image = _as_gray(image)
    xs, ys, cx, cy = _grid(image)
    with np.errstate(divide="ignore", invalid="ignore"):
        src_x = (xs - cx) / scale_factor + cx
        src_y = (ys - cy) / scale_factor + cy
    return _bilinear_sample(image, src_x, src_y)


def rotate_and_translate(image, angle_degrees: float, dx: int, dy: int) -> np.ndarray:
    """Rotate, then translate."""
    return translate(rotate(image, angle_degrees), dx, dy)


@dataclass
class GroundTruth:
    """A known transformation used to validate alignment results."""

    rotation_degrees: float = 0.0
    translation_x: int = 0
    translation_y: int = 0
    scale_factor: float = 1.0

    @classmethod
    def rotation(cls, angle: float) -> GroundTruth:
        return cls(rotation_degrees=angle)

    @classmethod
    def translation(cls, dx: int, dy: int) -> GroundTruth:
        return cls(translation_x=dx, translation_y=dy)