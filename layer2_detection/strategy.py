"""
Layer 2 — Detection Strategies
A single tunable pipeline description. Each preset picks its mask modes,
kernel sizes and acceptance bands; the detector runs whichever one it is given.
"""
import logging
from dataclasses import dataclass, field, replace
from typing import Dict, Optional, Tuple

from .result import DocumentType

logger = logging.getLogger(__name__)

THRESHOLD_MODES = ('otsu', 'adaptive', 'none')
EDGE_MODES = ('canny', 'none')
ORIENTATIONS = ('landscape', 'portrait', None)

# ISO/IEC 7810 ID-1 (CR80) and A4 long side / short side
ID1_ASPECT_RATIO = 85.60 / 53.98
A4_ASPECT_RATIO = 297.0 / 210.0


@dataclass(frozen=True)
class AspectBand:
    """Accepted long/short side ratio range mapped to a document type."""
    document_type: DocumentType
    low: float
    high: float
    orientation: Optional[str] = None  # orientation of the bounding box, None = either

    def matches(self, aspect_ratio: float, bbox_width: int, bbox_height: int) -> bool:
        if not self.low <= aspect_ratio <= self.high:
            return False
        if self.orientation == 'portrait':
            return bbox_height >= bbox_width
        if self.orientation == 'landscape':
            return bbox_width >= bbox_height
        return True


@dataclass(frozen=True)
class DetectionStrategy:
    """Configuration for one detection pipeline."""
    name: str = "card"

    # Mask generation
    threshold_mode: str = 'otsu'
    edge_mode: str = 'canny'
    edge_fallback: bool = True        # edge mask only used when threshold mask finds nothing

    # Edge-preserving smoothing (bilateral filter)
    blur_diameter: int = 9
    blur_sigma_color: float = 75.0
    blur_sigma_space: float = 75.0

    # Morphology
    close_kernel: int = 15
    dilate_kernel: int = 7
    edge_close_kernel: int = 5

    # Canny
    canny_low: int = 50
    canny_high: int = 150

    # Adaptive threshold
    adaptive_block_size: int = 31
    adaptive_c: int = -5

    # Candidate acceptance
    min_area_ratio: float = 0.03
    max_area_ratio: float = 0.40
    aspect_bands: Tuple[AspectBand, ...] = field(default_factory=lambda: (
        AspectBand(DocumentType.ID_CARD, 1.35, 1.8),
    ))
    min_fill_ratio: float = 0.75
    edge_margin: int = 10
    max_candidates: int = 15

    # Centering tolerance as a fraction of frame width, applied on both axes
    center_tolerance: float = 0.18

    def __post_init__(self):
        if self.threshold_mode not in THRESHOLD_MODES:
            raise ValueError(f"Unknown threshold mode: {self.threshold_mode}")
        if self.edge_mode not in EDGE_MODES:
            raise ValueError(f"Unknown edge mode: {self.edge_mode}")
        if self.threshold_mode == 'none' and self.edge_mode == 'none':
            raise ValueError("A strategy needs at least one mask")
        if self.adaptive_block_size < 3 or self.adaptive_block_size % 2 == 0:
            raise ValueError("Adaptive block size must be an odd number >= 3")
        if not 0.0 <= self.min_area_ratio < self.max_area_ratio <= 1.0:
            raise ValueError("Area band must satisfy 0 <= min < max <= 1")
        if not self.aspect_bands:
            raise ValueError("A strategy needs at least one aspect band")
        for band in self.aspect_bands:
            if band.orientation not in ORIENTATIONS:
                raise ValueError(f"Unknown orientation: {band.orientation}")
            if band.low > band.high:
                raise ValueError(f"Aspect band {band.low}-{band.high} is inverted")

    def match_band(self, aspect_ratio: float, bbox_width: int, bbox_height: int) -> Optional[AspectBand]:
        """First aspect band accepting the candidate, or None."""
        for band in self.aspect_bands:
            if band.matches(aspect_ratio, bbox_width, bbox_height):
                return band
        return None

    def with_overrides(self, **overrides) -> "DetectionStrategy":
        return replace(self, **overrides)


CARD_STRATEGY = DetectionStrategy()

A4_STRATEGY = DetectionStrategy(
    name="a4",
    aspect_bands=(
        AspectBand(DocumentType.AADHAAR_LETTER, 1.3, 1.55, orientation='portrait'),
    ),
    min_area_ratio=0.05,
    max_area_ratio=0.50,
    min_fill_ratio=0.6,
    edge_margin=15,
)

MIXED_STRATEGY = DetectionStrategy(
    name="mixed",
    edge_fallback=False,
    aspect_bands=(
        AspectBand(DocumentType.AADHAAR_LETTER, 1.3, 1.55, orientation='portrait'),
        AspectBand(DocumentType.ID_CARD, 1.35, 1.8),
    ),
    max_area_ratio=0.50,
    min_fill_ratio=0.7,
)

STRATEGIES: Dict[str, DetectionStrategy] = {
    s.name: s for s in (CARD_STRATEGY, A4_STRATEGY, MIXED_STRATEGY)
}


def get_strategy(name: Optional[str] = None) -> DetectionStrategy:
    """
    Resolve a strategy preset by name.

    Args:
        name: Preset name (defaults to "card")

    Returns:
        DetectionStrategy: The preset

    Raises:
        ValueError: If the preset does not exist
    """
    key = (name or CARD_STRATEGY.name).strip().lower()
    try:
        strategy = STRATEGIES[key]
    except KeyError:
        raise ValueError(
            f"Unknown detection strategy '{name}' (available: {', '.join(sorted(STRATEGIES))})"
        ) from None
    logger.debug(f"Using detection strategy: {strategy.name}")
    return strategy
