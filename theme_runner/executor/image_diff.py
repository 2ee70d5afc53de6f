"""Perceptual screenshot diff.

Both images are cropped to their common top-left region (never resampled,
resizing would introduce interpolation noise) and compared pixel by pixel in
YIQ space, the same colour metric pixelmatch uses. A pixel counts as changed
when its weighted YIQ delta exceeds ``MAX_YIQ_DELTA * threshold**2`` and
neither image looks anti-aliased there (pixelmatch's neighbour test, so a
sub-pixel shift of a smoothed edge is not reported).
"""

from __future__ import annotations

import logging
from pathlib import Path

import numpy as np
from PIL import Image, UnidentifiedImageError

from theme_runner.errors import ImageDecodeError
from theme_runner.models.job_result import DiffOutcome

logger = logging.getLogger(__name__)

# Largest possible YIQ delta between two colours
MAX_YIQ_DELTA = 35215.0
DEFAULT_THRESHOLD = 0.1

_DIFF_COLOR = np.array([255, 0, 0, 255], dtype=np.uint8)
_AA_COLOR = np.array([255, 255, 0, 255], dtype=np.uint8)
_FADE_ALPHA = 0.1


def _load_rgba(path: str | Path) -> Image.Image:
    try:
        with Image.open(path) as img:
            img.load()
            return img.convert("RGBA")
    except (OSError, ValueError, UnidentifiedImageError) as e:
        raise ImageDecodeError(f"cannot decode {path}: {e}") from e


def _blend_on_white(rgba: np.ndarray) -> np.ndarray:
    rgb = rgba[..., :3]
    alpha = rgba[..., 3:4] / 255.0
    return 255.0 + (rgb - 255.0) * alpha


def _yiq(rgb: np.ndarray) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    r, g, b = rgb[..., 0], rgb[..., 1], rgb[..., 2]
    y = r * 0.29889531 + g * 0.58662247 + b * 0.11448223
    i = r * 0.59597799 - g * 0.27417610 - b * 0.32180189
    q = r * 0.21147017 - g * 0.52261711 + b * 0.31114694
    return y, i, q


def changed_mask(a: np.ndarray, b: np.ndarray, threshold: float = DEFAULT_THRESHOLD) -> np.ndarray:
    """Boolean mask of perceptibly different pixels for two HxWx4 uint8 arrays."""
    return compare(a, b, threshold)[0]


def compare(
    a: np.ndarray, b: np.ndarray, threshold: float = DEFAULT_THRESHOLD
) -> tuple[np.ndarray, np.ndarray]:
    """Split perceptibly different pixels into (changed, anti-aliased) masks.

    Candidates whose YIQ delta exceeds the threshold are dropped from the
    changed mask when either image looks anti-aliased at that point.
    """
    if a.shape != b.shape:
        raise ValueError(f"shape mismatch: {a.shape} vs {b.shape}")
    identical = np.all(a == b, axis=-1)

    ya, ia, qa = _yiq(_blend_on_white(a.astype(np.float64)))
    yb, ib, qb = _yiq(_blend_on_white(b.astype(np.float64)))
    delta = 0.5053 * (ya - yb) ** 2 + 0.299 * (ia - ib) ** 2 + 0.1957 * (qa - qb) ** 2

    candidates = (delta > MAX_YIQ_DELTA * threshold * threshold) & ~identical
    antialiased = np.zeros_like(candidates)
    rows, cols = np.nonzero(candidates)
    if rows.size:
        siblings = _many_siblings(a) & _many_siblings(b)
        flags = _antialiased(ya, rows, cols, siblings) | _antialiased(yb, rows, cols, siblings)
        antialiased[rows[flags], cols[flags]] = True
    return candidates & ~antialiased, antialiased


# Neighbour offsets as (dx, dy), column by column
_NEIGHBOURS = tuple((dx, dy) for dx in (-1, 0, 1) for dy in (-1, 0, 1) if dx or dy)


def _edge(rows: np.ndarray, cols: np.ndarray, height: int, width: int) -> np.ndarray:
    return (cols == 0) | (cols == width - 1) | (rows == 0) | (rows == height - 1)


def _many_siblings(img: np.ndarray) -> np.ndarray:
    """Pixels with more than two identical neighbours (image edges count as one)."""
    height, width = img.shape[:2]
    rows, cols = np.indices((height, width))
    count = _edge(rows, cols, height, width).astype(np.int8)
    for dx, dy in _NEIGHBOURS:
        centre = (slice(max(0, -dy), height - max(0, dy)), slice(max(0, -dx), width - max(0, dx)))
        other = (slice(max(0, dy), height + min(0, dy)), slice(max(0, dx), width + min(0, dx)))
        count[centre] += np.all(img[centre] == img[other], axis=-1)
    return count > 2


def _antialiased(y: np.ndarray, rows: np.ndarray, cols: np.ndarray, siblings: np.ndarray) -> np.ndarray:
    """pixelmatch's anti-aliasing test for the pixels at (rows, cols) of one image.

    A pixel is anti-aliased when it has at most two equal neighbours, both a
    darker and a brighter one, and the darkest or brightest of those sits
    inside a flat area in both images.
    """
    height, width = y.shape
    zeroes = _edge(rows, cols, height, width).astype(np.int8)
    lo = np.zeros(rows.shape)
    hi = np.zeros(rows.shape)
    lo_at = [rows, cols]
    hi_at = [rows, cols]
    centre = y[rows, cols]

    for dx, dy in _NEIGHBOURS:
        nr, nc = rows + dy, cols + dx
        inside = (nr >= 0) & (nr < height) & (nc >= 0) & (nc < width)
        nr, nc = np.clip(nr, 0, height - 1), np.clip(nc, 0, width - 1)
        delta = np.where(inside, centre - y[nr, nc], np.nan)

        zero = delta == 0
        darker = ~zero & (delta < lo)
        brighter = ~zero & ~darker & (delta > hi)
        zeroes += zero
        lo = np.where(darker, delta, lo)
        hi = np.where(brighter, delta, hi)
        lo_at = [np.where(darker, nr, lo_at[0]), np.where(darker, nc, lo_at[1])]
        hi_at = [np.where(brighter, nr, hi_at[0]), np.where(brighter, nc, hi_at[1])]

    flat = siblings[lo_at[0], lo_at[1]] | siblings[hi_at[0], hi_at[1]]
    return (zeroes <= 2) & (lo < 0) & (hi > 0) & flat


def _render_diff(base: np.ndarray, mask: np.ndarray, antialiased: np.ndarray) -> Image.Image:
    """Faded grayscale of ``base``: changed pixels red, anti-aliased ones yellow."""
    y, _, _ = _yiq(_blend_on_white(base.astype(np.float64)))
    gray = np.clip(255.0 + (y - 255.0) * _FADE_ALPHA, 0, 255).astype(np.uint8)
    out = np.empty(base.shape[:2] + (4,), dtype=np.uint8)
    out[..., 0] = gray
    out[..., 1] = gray
    out[..., 2] = gray
    out[..., 3] = 255
    out[antialiased] = _AA_COLOR
    out[mask] = _DIFF_COLOR
    return Image.fromarray(out)


def diff_images(
    before_path: str | Path,
    after_path: str | Path,
    out_path: str | Path,
    threshold: float = DEFAULT_THRESHOLD,
) -> DiffOutcome:
    """Compare two screenshots and write the diff raster to ``out_path``.

    Raises ImageDecodeError if either input cannot be decoded.
    """
    before = _load_rgba(before_path)
    after = _load_rgba(after_path)

    width = min(before.width, after.width)
    height = min(before.height, after.height)
    if (before.width, before.height) != (after.width, after.height):
        logger.debug("Cropping %s (%dx%d) and %s (%dx%d) to %dx%d",
                     before_path, before.width, before.height,
                     after_path, after.width, after.height, width, height)

    a = np.asarray(before.crop((0, 0, width, height)))
    b = np.asarray(after.crop((0, 0, width, height)))

    mask, antialiased = compare(a, b, threshold)
    pixels = int(mask.sum())
    total = width * height
    percentage = (pixels / total) * 100.0 if total else 0.0

    out_path = Path(out_path)
    if total:
        out_path.parent.mkdir(parents=True, exist_ok=True)
        _render_diff(a, mask, antialiased).save(out_path)

    return DiffOutcome(
        pixels=pixels,
        percentage=percentage,
        width=width,
        height=height,
        diff_path=str(out_path) if total else "",
    )
