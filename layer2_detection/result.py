"""
Layer 2 — Detection Result
The single value emitted per processed frame and consumed by the stability
controller and the display layer.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple


class DetectionStatus(str, Enum):
    """Per-frame detection status."""
    SEARCHING = "searching"
    DETECTED = "detected"
    CENTERED = "centered"


class DocumentType(str, Enum):
    """Document classes reported to the display layer."""
    ID_CARD = "ID Card"
    AADHAAR_LETTER = "Aadhaar Letter"
    PASSPORT = "Passport"
    AADHAAR = "Aadhaar"
    PAN = "PAN"
    DRIVING_LICENSE = "Driving License"
    UNKNOWN = "Unknown"


# Document types whose guide is drawn as an A4 portrait sheet
A4_DOCUMENT_TYPES = frozenset({DocumentType.AADHAAR_LETTER, DocumentType.PASSPORT})

SEARCHING_MESSAGE = "Looking for document..."
DETECTED_MESSAGE = "Center the document"
CENTERED_MESSAGE = "Hold Still..."


@dataclass(frozen=True)
class BoundingBox:
    """Axis-aligned box plus corners ordered TL, TR, BR, BL."""
    x: int
    y: int
    width: int
    height: int
    corners: Tuple[Tuple[float, float], ...] = field(default_factory=tuple)

    @property
    def center(self) -> Tuple[float, float]:
        return (self.x + self.width / 2.0, self.y + self.height / 2.0)

    def to_dict(self) -> Dict:
        return {
            'x': self.x,
            'y': self.y,
            'width': self.width,
            'height': self.height,
            'corners': [{'x': round(float(cx), 2), 'y': round(float(cy), 2)} for cx, cy in self.corners],
        }


@dataclass(frozen=True)
class DetectionResult:
    """
    Outcome of running the detector over one frame.

    Immutable once emitted. A centered result always carries a box.
    """
    status: DetectionStatus = DetectionStatus.SEARCHING
    document_type: DocumentType = DocumentType.UNKNOWN
    box: Optional[BoundingBox] = None
    message: Optional[str] = SEARCHING_MESSAGE
    score: float = 0.0
    source: Optional[str] = None

    def __post_init__(self):
        if self.status == DetectionStatus.CENTERED and self.box is None:
            raise ValueError("A centered detection result requires a bounding box")

    @property
    def is_centered(self) -> bool:
        return self.status == DetectionStatus.CENTERED

    @classmethod
    def searching(cls) -> "DetectionResult":
        return cls()

    def to_dict(self) -> Dict:
        """Convert to dictionary for API response."""
        result = {
            'status': self.status.value,
            'documentType': self.document_type.value,
            'message': self.message,
        }
        if self.box is not None:
            result['box'] = self.box.to_dict()
        if self.source:
            result['source'] = self.source
        return result


def corners_list(box: Optional[BoundingBox]) -> List[Tuple[float, float]]:
    """Corners of a box as a plain list (empty when there is no box)."""
    if box is None:
        return []
    return [(float(x), float(y)) for x, y in box.corners]
