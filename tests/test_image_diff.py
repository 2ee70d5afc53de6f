"""Tests for the perceptual image diff."""

import numpy as np
import pytest
from PIL import Image

from theme_runner.errors import ImageDecodeError
from theme_runner.executor.image_diff import changed_mask, compare, diff_images


class TestDiffImages:
    """Tests for diff_images."""

    def test_identical_images(self, tmp_path, png_writer):
        a = png_writer(tmp_path / "a.png")
        b = png_writer(tmp_path / "b.png")
        outcome = diff_images(a, b, tmp_path / "diff.png")
        assert outcome.pixels == 0
        assert outcome.percentage == 0.0
        assert (outcome.width, outcome.height) == (40, 30)

    def test_counts_changed_region(self, tmp_path, png_writer):
        a = png_writer(tmp_path / "a.png")
        b = png_writer(tmp_path / "b.png", box=(0, 0, 10, 3))
        outcome = diff_images(a, b, tmp_path / "diff.png")
        assert outcome.pixels == 30
        assert outcome.percentage == pytest.approx(30 / 1200 * 100)

    def test_writes_diff_raster(self, tmp_path, png_writer):
        a = png_writer(tmp_path / "a.png")
        b = png_writer(tmp_path / "b.png", box=(5, 5, 6, 6))
        out = tmp_path / "nested" / "diff.png"
        outcome = diff_images(a, b, out)
        assert out.exists()
        assert outcome.diff_path == str(out)
        with Image.open(out) as img:
            assert img.size == (40, 30)
            assert img.convert("RGBA").getpixel((5, 5)) == (255, 0, 0, 255)

    def test_crops_to_common_region(self, tmp_path, png_writer):
        a = png_writer(tmp_path / "a.png", size=(40, 30))
        # Extra area outside the 40x30 overlap is black but never compared
        b = png_writer(tmp_path / "b.png", size=(60, 50), box=(40, 30, 60, 50))
        outcome = diff_images(a, b, tmp_path / "diff.png")
        assert outcome.pixels == 0
        assert (outcome.width, outcome.height) == (40, 30)

    def test_imperceptible_change_ignored(self, tmp_path, png_writer):
        a = png_writer(tmp_path / "a.png", color=(200, 200, 200, 255))
        b = png_writer(tmp_path / "b.png", color=(201, 200, 200, 255))
        assert diff_images(a, b, tmp_path / "diff.png").pixels == 0

    def test_threshold_zero_counts_any_change(self, tmp_path, png_writer):
        a = png_writer(tmp_path / "a.png", size=(4, 4), color=(200, 200, 200, 255))
        b = png_writer(tmp_path / "b.png", size=(4, 4), color=(201, 200, 200, 255))
        assert diff_images(a, b, tmp_path / "diff.png", threshold=0).pixels == 16

    def test_undecodable_input(self, tmp_path, png_writer):
        a = png_writer(tmp_path / "a.png")
        bad = tmp_path / "bad.png"
        bad.write_bytes(b"not an image")
        with pytest.raises(ImageDecodeError):
            diff_images(a, bad, tmp_path / "diff.png")

    def test_missing_input(self, tmp_path, png_writer):
        a = png_writer(tmp_path / "a.png")
        with pytest.raises(ImageDecodeError):
            diff_images(a, tmp_path / "nope.png", tmp_path / "diff.png")


class TestChangedMask:
    """Tests for changed_mask."""

    def test_shape_mismatch(self):
        with pytest.raises(ValueError):
            changed_mask(np.zeros((2, 2, 4), dtype=np.uint8), np.zeros((3, 2, 4), dtype=np.uint8))

    def test_transparent_pixels_blend_on_white(self):
        white = np.full((1, 1, 4), 255, dtype=np.uint8)
        clear_black = np.array([[[0, 0, 0, 0]]], dtype=np.uint8)
        assert not changed_mask(white, clear_black).any()


def _smoothed_edge(gray: int) -> np.ndarray:
    """Black left half, one anti-aliased column of ``gray``, white right side."""
    img = np.full((10, 10, 4), 255, dtype=np.uint8)
    img[:, :5, :3] = 0
    img[:, 5, :3] = gray
    return img


class TestAntialiasing:
    """Tests for the anti-aliased pixel exclusion."""

    def test_subpixel_edge_shift_is_not_counted(self):
        changed, antialiased = compare(_smoothed_edge(128), _smoothed_edge(64))
        assert not changed.any()
        assert antialiased[:, 5].all()
        assert antialiased.sum() == 10

    def test_subpixel_edge_shift_on_disk(self, tmp_path):
        Image.fromarray(_smoothed_edge(128)).save(tmp_path / "a.png")
        Image.fromarray(_smoothed_edge(64)).save(tmp_path / "b.png")
        outcome = diff_images(tmp_path / "a.png", tmp_path / "b.png", tmp_path / "diff.png")
        assert outcome.pixels == 0
        with Image.open(tmp_path / "diff.png") as img:
            assert img.convert("RGBA").getpixel((5, 5)) == (255, 255, 0, 255)

    def test_solid_block_is_still_counted(self):
        before = np.full((10, 10, 4), 255, dtype=np.uint8)
        after = before.copy()
        after[3:6, 3:6] = (255, 0, 0, 255)
        changed, antialiased = compare(before, after)
        assert changed.sum() == 9
        assert not antialiased.any()

    def test_changed_mask_matches_compare(self):
        before, after = _smoothed_edge(128), _smoothed_edge(0)
        assert np.array_equal(changed_mask(before, after), compare(before, after)[0])
