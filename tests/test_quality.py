"""
tests/test_quality.py — Photo Quality Scoring Tests
====================================================
"""

from __future__ import annotations

import io

import pytest
from PIL import Image, ImageDraw

from conftest import jpeg_bytes
from photoquest.engine.quality import (
    ImageMetrics,
    blur_score,
    composition_score,
    lighting_score,
    measure_image,
    score_quality,
)


def _checkerboard(size: int = 400, cell: int = 8) -> bytes:
    img = Image.new("L", (size, size), 0)
    draw = ImageDraw.Draw(img)
    for x in range(0, size, cell):
        for y in range(0, size, cell):
            if (x // cell + y // cell) % 2 == 0:
                draw.rectangle([x, y, x + cell - 1, y + cell - 1], fill=255)
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


class TestComponents:
    def test_lighting_peaks_at_mid_grey(self):
        assert lighting_score(127.5) == 1.0
        assert lighting_score(0) == 0.0
        assert lighting_score(255) == 0.0

    def test_blur_caps_at_one(self):
        assert blur_score(0) == 0.0
        assert blur_score(150) == 0.5
        assert blur_score(10_000) == 1.0

    @pytest.mark.parametrize("w,h,expected", [
        (800, 600, 0.8),
        (1000, 1000, 0.8),
        (1200, 500, 0.6),
        (4000, 500, 0.3),
        (0, 100, 0.0),
    ])
    def test_composition(self, w, h, expected):
        assert composition_score(w, h) == expected


class TestMeasure:
    def test_grey_jpeg(self):
        metrics = measure_image(jpeg_bytes(800, 600))
        assert metrics.decodable
        assert (metrics.width, metrics.height) == (800, 600)
        assert metrics.mean_luminance == pytest.approx(128, abs=2)
        assert metrics.edge_variance < 5

    def test_sharp_pattern_has_edges(self):
        assert measure_image(_checkerboard()).edge_variance > 300

    def test_garbage_bytes(self):
        metrics = measure_image(b"definitely not an image")
        assert not metrics.decodable
        assert metrics.size_bytes == len(b"definitely not an image")


class TestScore:
    def test_grey_photo_is_acceptable(self):
        check = score_quality(measure_image(jpeg_bytes()))
        # 0.3 resolution + ~0.3 lighting + 0 blur + 0.16 composition
        assert check.overall_score == pytest.approx(0.76, abs=0.01)
        assert check.is_acceptable

    def test_resolution_requirement(self):
        metrics = ImageMetrics(800, 600, 1000, True, 127.5, 0.0)
        check = score_quality(metrics, {"width": 1920, "height": 1080})
        assert not check.resolution_passed
        assert check.required_resolution == (1920, 1080)
        assert not check.is_acceptable

    def test_undecodable_scores_zero(self):
        check = score_quality(ImageMetrics(0, 0, 5, False))
        assert check.overall_score == 0.0
        assert not check.is_acceptable

    def test_threshold_is_configurable(self):
        metrics = ImageMetrics(800, 600, 1000, True, 127.5, 0.0)
        assert not score_quality(metrics, threshold=0.9).is_acceptable

    def test_to_dict_shape(self):
        data = score_quality(ImageMetrics(800, 600, 1000, True, 127.5, 300.0)).to_dict()
        assert data["is_acceptable"] is True
        assert data["overall_score"] == 0.96
        assert data["resolution"] == {"passed": True, "actual": [800, 600], "required": None}
