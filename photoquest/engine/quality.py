"""
photoquest.engine.quality — Photo Quality Scoring
==================================================

Scores a submitted photo on four components, each in ``[0, 1]``:

+--------------+--------+------------------------------------------------+
| Component    | Weight | Signal                                         |
+==============+========+================================================+
| resolution   | 0.3    | 1 if both sides meet the quest minimum, else 0 |
| lighting     | 0.3    | mean luminance distance from mid-grey          |
| blur         | 0.2    | variance of a Pillow edge-filtered greyscale   |
| composition  | 0.2    | aspect-ratio heuristic                         |
+--------------+--------+------------------------------------------------+

The photo is acceptable when the weighted sum is at least the
``moderation.quality_threshold`` setting (default 0.6).  Bytes Pillow
cannot decode measure as all-zero.
"""

from __future__ import annotations

import io
import logging
from collections.abc import Mapping
from dataclasses import dataclass

from PIL import Image, ImageFilter, ImageStat, UnidentifiedImageError

logger = logging.getLogger(__name__)

WEIGHT_RESOLUTION = 0.3
WEIGHT_LIGHTING = 0.3
WEIGHT_BLUR = 0.2
WEIGHT_COMPOSITION = 0.2

DEFAULT_QUALITY_THRESHOLD = 0.6

# Edge variance at which a photo counts as fully sharp
SHARPNESS_VARIANCE_TARGET = 300.0

# Longest side used for measuring; bigger images are thumbnailed first
_MEASURE_MAX_SIDE = 1024


@dataclass(frozen=True, slots=True)
class ImageMetrics:
    width: int
    height: int
    size_bytes: int
    decodable: bool
    mean_luminance: float = 0.0
    edge_variance: float = 0.0


@dataclass(frozen=True, slots=True)
class QualityCheck:
    is_acceptable: bool
    overall_score: float
    resolution_passed: bool
    actual_resolution: tuple[int, int]
    required_resolution: tuple[int, int] | None
    lighting: float
    blur: float
    composition: float

    def to_dict(self) -> dict:
        return {
            "is_acceptable": self.is_acceptable,
            "overall_score": round(self.overall_score, 3),
            "resolution": {
                "passed": self.resolution_passed,
                "actual": list(self.actual_resolution),
                "required": list(self.required_resolution) if self.required_resolution else None,
            },
            "lighting": round(self.lighting, 3),
            "blur": round(self.blur, 3),
            "composition": round(self.composition, 3),
        }


# ---------------------------------------------------------------------------
# Measurement
# ---------------------------------------------------------------------------
def measure_image(data: bytes) -> ImageMetrics:
    """Decode *data* with Pillow and measure luminance and edge variance."""
    try:
        with Image.open(io.BytesIO(data)) as img:
            width, height = img.size
            grey = img.convert("L")
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError) as exc:
        logger.info("Photo could not be decoded for quality scoring: %s", exc)
        return ImageMetrics(width=0, height=0, size_bytes=len(data), decodable=False)

    if max(grey.size) > _MEASURE_MAX_SIDE:
        grey.thumbnail((_MEASURE_MAX_SIDE, _MEASURE_MAX_SIDE))

    luminance = ImageStat.Stat(grey).mean[0]
    edges = grey.filter(ImageFilter.FIND_EDGES)
    # Pillow copies the 1px border from the source instead of filtering it
    if edges.width > 2 and edges.height > 2:
        edges = edges.crop((1, 1, edges.width - 1, edges.height - 1))
    edge_variance = ImageStat.Stat(edges).var[0]

    return ImageMetrics(
        width=width,
        height=height,
        size_bytes=len(data),
        decodable=True,
        mean_luminance=luminance,
        edge_variance=edge_variance,
    )


# ---------------------------------------------------------------------------
# Component scores
# ---------------------------------------------------------------------------
def lighting_score(mean_luminance: float) -> float:
    """1.0 at mid-grey, falling linearly to 0 at pure black or white."""
    return max(0.0, 1.0 - abs(mean_luminance - 127.5) / 127.5)


def blur_score(edge_variance: float) -> float:
    return min(1.0, max(0.0, edge_variance / SHARPNESS_VARIANCE_TARGET))


def composition_score(width: int, height: int) -> float:
    if width <= 0 or height <= 0:
        return 0.0
    ratio = max(width, height) / min(width, height)
    if ratio <= 1.8:
        return 0.8
    if ratio <= 3.0:
        return 0.6
    return 0.3


def _required_resolution(min_resolution: Mapping | None) -> tuple[int, int] | None:
    if not min_resolution:
        return None
    return int(min_resolution.get("width", 0)), int(min_resolution.get("height", 0))


def score_quality(
    metrics: ImageMetrics,
    min_resolution: Mapping | None = None,
    threshold: float = DEFAULT_QUALITY_THRESHOLD,
) -> QualityCheck:
    """Weighted quality score for *metrics* against an optional
    ``{"width", "height"}`` minimum."""
    required = _required_resolution(min_resolution)

    if not metrics.decodable:
        return QualityCheck(
            is_acceptable=False,
            overall_score=0.0,
            resolution_passed=False,
            actual_resolution=(0, 0),
            required_resolution=required,
            lighting=0.0,
            blur=0.0,
            composition=0.0,
        )

    if required is None:
        resolution_passed = True
    else:
        resolution_passed = metrics.width >= required[0] and metrics.height >= required[1]

    lighting = lighting_score(metrics.mean_luminance)
    blur = blur_score(metrics.edge_variance)
    composition = composition_score(metrics.width, metrics.height)

    overall = (
        WEIGHT_RESOLUTION * (1.0 if resolution_passed else 0.0)
        + WEIGHT_LIGHTING * lighting
        + WEIGHT_BLUR * blur
        + WEIGHT_COMPOSITION * composition
    )
    return QualityCheck(
        is_acceptable=overall >= threshold,
        overall_score=overall,
        resolution_passed=resolution_passed,
        actual_resolution=(metrics.width, metrics.height),
        required_resolution=required,
        lighting=lighting,
        blur=blur,
        composition=composition,
    )
