"""
Layer 2 — Geometry / Scoring Primitives
Wraps OpenCV contour and rectangle outputs into scored document candidates.
"""
import cv2
import numpy as np
from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple

# Polygon approximation tolerance as a fraction of the contour perimeter
APPROX_EPSILON_RATIO = 0.02


@dataclass(frozen=True)
class RotatedRect:
    """Minimum-area rectangle, normalised so that width >= height."""
    center: Tuple[float, float]
    width: float
    height: float
    angle: float

    @classmethod
    def from_cv(cls, rect) -> "RotatedRect":
        (cx, cy), (w, h), angle = rect
        if h > w:
            # Same box described from the other side
            w, h = h, w
            angle = angle + 90.0
        return cls(center=(float(cx), float(cy)), width=float(w), height=float(h), angle=float(angle))

    @property
    def area(self) -> float:
        return self.width * self.height

    def points(self) -> np.ndarray:
        return cv2.boxPoints((self.center, (self.width, self.height), self.angle))


@dataclass(frozen=True)
class Candidate:
    """A contour from one strategy mask, evaluated for document-likeness."""
    area: float
    bbox: Tuple[int, int, int, int]   # x, y, width, height
    rotated: Optional[RotatedRect] = None
    vertex_count: int = 0
    source: str = ""

    @classmethod
    def from_contour(cls, contour: np.ndarray, source: str, area: Optional[float] = None) -> "Candidate":
        """
        Build a candidate from an OpenCV contour.

        Args:
            contour: Contour points as returned by cv2.findContours
            source: Provenance tag of the mask that produced it
            area: Precomputed contour area (computed if omitted)
        """
        if area is None:
            area = cv2.contourArea(contour)
        x, y, w, h = cv2.boundingRect(contour)
        rotated = RotatedRect.from_cv(cv2.minAreaRect(contour))
        perimeter = cv2.arcLength(contour, True)
        approx = cv2.approxPolyDP(contour, APPROX_EPSILON_RATIO * perimeter, True)
        return cls(
            area=float(area),
            bbox=(int(x), int(y), int(w), int(h)),
            rotated=rotated,
            vertex_count=len(approx),
            source=source,
        )

    @property
    def rect_size(self) -> Tuple[float, float]:
        """Long and short side, rotated rectangle preferred over bounding box."""
        if self.rotated is not None:
            return self.rotated.width, self.rotated.height
        _, _, w, h = self.bbox
        return float(max(w, h)), float(min(w, h))

    @property
    def aspect_ratio(self) -> float:
        long_side, short_side = self.rect_size
        if short_side <= 0:
            return 0.0
        return long_side / short_side

    @property
    def fill_ratio(self) -> float:
        long_side, short_side = self.rect_size
        rect_area = long_side * short_side
        if rect_area <= 0:
            return 0.0
        return self.area / rect_area

    @property
    def score(self) -> float:
        return self.area * self.fill_ratio

    @property
    def center(self) -> Tuple[float, float]:
        x, y, w, h = self.bbox
        return (x + w / 2.0, y + h / 2.0)

    def touches_edge(self, frame_width: int, frame_height: int, margin: int) -> bool:
        """True if the bounding box comes within `margin` px of any frame edge."""
        x, y, w, h = self.bbox
        return (
            x < margin or y < margin or
            x + w > frame_width - margin or
            y + h > frame_height - margin
        )

    def corners(self) -> Tuple[Tuple[float, float], ...]:
        """Four corners ordered top-left, top-right, bottom-right, bottom-left."""
        if self.rotated is not None and self.rotated.area > 0:
            pts = self.rotated.points()
        else:
            x, y, w, h = self.bbox
            pts = np.array([[x, y], [x + w, y], [x + w, y + h], [x, y + h]], dtype=np.float32)
        ordered = order_corners(pts)
        return tuple((float(px), float(py)) for px, py in ordered)


def order_corners(pts: np.ndarray) -> np.ndarray:
    """
    Order points in consistent order: top-left, top-right, bottom-right, bottom-left

    Args:
        pts: Array of 4 points

    Returns:
        numpy.ndarray: Ordered points
    """
    c = np.asarray(pts, dtype=np.float32).reshape(4, 2)

    # Sort by y-coordinate
    c = c[c[:, 1].argsort(kind='stable')]

    # Top two and bottom two, each left to right
    top = c[:2][c[:2, 0].argsort(kind='stable')]
    bottom = c[2:][c[2:, 0].argsort(kind='stable')]

    return np.array([top[0], top[1], bottom[1], bottom[0]], dtype=np.float32)


def select_best(candidates: Iterable[Candidate]) -> Optional[Candidate]:
    """Highest scoring candidate; the first one seen wins a tie."""
    best = None
    for candidate in candidates:
        if best is None or candidate.score > best.score:
            best = candidate
    return best


def rank(candidates: Iterable[Candidate]) -> List[Candidate]:
    """Candidates by descending score, stable for equal scores."""
    return sorted(candidates, key=lambda c: c.score, reverse=True)
