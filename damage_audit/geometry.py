"""Polygon helpers shared by the post-processor and the benchmark.

Points are ``(x, y)`` pairs in the provider's normalized 0-1000 space.
"""
from __future__ import annotations
from typing import NamedTuple, Sequence, Tuple

import cv2
import numpy as np

Point = Tuple[float, float]
Polygon = Sequence[Sequence[float]]


class BoundingBox(NamedTuple):
    min_x: float
    min_y: float
    max_x: float
    max_y: float

    @property
    def width(self) -> float:
        return self.max_x - self.min_x

    @property
    def height(self) -> float:
        return self.max_y - self.min_y

    @property
    def area(self) -> float:
        return self.width * self.height


def polygon_area(points: Polygon) -> float:
    """Shoelace area. Fewer than 3 points has no area."""
    n = len(points)
    if n < 3:
        return 0.0
    s = 0.0
    for i in range(n):
        x1, y1 = points[i][0], points[i][1]
        x2, y2 = points[(i + 1) % n][0], points[(i + 1) % n][1]
        s += x1 * y2 - x2 * y1
    return abs(s) / 2.0


def bounding_box(points: Polygon) -> BoundingBox:
    if not points:
        return BoundingBox(0.0, 0.0, 0.0, 0.0)
    xs = [float(p[0]) for p in points]
    ys = [float(p[1]) for p in points]
    return BoundingBox(min(xs), min(ys), max(xs), max(ys))


def bbox_center(points: Polygon) -> Point:
    b = bounding_box(points)
    return ((b.min_x + b.max_x) / 2.0, (b.min_y + b.max_y) / 2.0)


def iou(poly_a: Polygon, poly_b: Polygon) -> float:
    """Intersection-over-union of the two polygons' bounding boxes.

    This is an axis-aligned approximation, not polygon clipping: rotated or
    concave shapes get their overlap undercounted. Benchmark baselines were
    produced with it, so keep it as the default scorer.
    """
    a = bounding_box(poly_a)
    b = bounding_box(poly_b)
    inter_w = max(0.0, min(a.max_x, b.max_x) - max(a.min_x, b.min_x))
    inter_h = max(0.0, min(a.max_y, b.max_y) - max(a.min_y, b.min_y))
    inter = inter_w * inter_h
    union = a.area + b.area - inter
    if union <= 0.0:
        return 0.0
    return inter / union


def point_in_polygon(point: Point, polygon: Polygon) -> bool:
    """Even-odd ray casting.

    Degenerate polygons (< 3 points) are not meaningful here; callers treat a
    missing hull as "contained" before ever calling this.
    """
    x, y = point
    inside = False
    n = len(polygon)
    j = n - 1
    for i in range(n):
        xi, yi = polygon[i][0], polygon[i][1]
        xj, yj = polygon[j][0], polygon[j][1]
        if (yi > y) != (yj > y):
            x_cross = (xj - xi) * (y - yi) / (yj - yi) + xi
            if x < x_cross:
                inside = not inside
        j = i
    return inside


def _as_contour(poly: Polygon) -> np.ndarray:
    return np.asarray(poly, dtype=np.float32).reshape(-1, 1, 2)


def polygon_iou(poly_a: Polygon, poly_b: Polygon) -> float:
    """Exact IoU of two convex polygons.

    Not the default scorer (see :func:`iou`).
    """
    area_a = polygon_area(poly_a)
    area_b = polygon_area(poly_b)
    if area_a <= 0.0 or area_b <= 0.0:
        return 0.0
    inter_area, _ = cv2.intersectConvexConvex(_as_contour(poly_a), _as_contour(poly_b))
    inter = float(max(0.0, inter_area))
    union = area_a + area_b - inter
    if union <= 0.0:
        return 0.0
    return min(1.0, inter / union)
