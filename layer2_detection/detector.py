"""
Layer 2 — Frame Detector
Responsibility: Locate and classify a single document in one color frame
Output: DetectionResult (searching / detected / centered)

Region-based approach: rather than relying only on edges, which pick up the
printed details inside a card, the bright document region is separated from
the darker background by thresholding. Edge detection is kept as a second
mask for low-contrast scenes.
"""
import cv2
import numpy as np
import logging
from typing import Callable, List, Optional, Tuple

from error_handlers import FrameProcessingError
from .geometry import Candidate, rank, select_best
from .result import (
    BoundingBox,
    CENTERED_MESSAGE,
    DETECTED_MESSAGE,
    DetectionResult,
    DetectionStatus,
    DocumentType,
)
from .strategy import CARD_STRATEGY, DetectionStrategy

logger = logging.getLogger(__name__)

# Per-frame diagnostics are only logged for every Nth frame
LOG_EVERY_N_FRAMES = 15

MaskBuilder = Callable[[np.ndarray], Tuple[str, np.ndarray]]


class FrameDetector:
    """
    Runs one detection strategy over single frames.

    detect() is a pure function of the frame and the strategy: feeding the
    same frame twice yields the same result.
    """

    def __init__(self, strategy: Optional[DetectionStrategy] = None):
        """
        Initialize frame detector

        Args:
            strategy: Detection strategy (card preset if not provided)
        """
        self.strategy = strategy or CARD_STRATEGY
        self._frame_count = 0

        logger.info(f"FrameDetector initialized with strategy '{self.strategy.name}'")
        logger.debug(f"  Masks: threshold={self.strategy.threshold_mode}, "
                     f"edge={self.strategy.edge_mode}, fallback={self.strategy.edge_fallback}")
        logger.debug(f"  Area band: {self.strategy.min_area_ratio:.0%}-{self.strategy.max_area_ratio:.0%}")

    def detect(self, frame: np.ndarray) -> DetectionResult:
        """
        Detect the best document candidate in a frame.

        Args:
            frame: BGR, BGRA or grayscale image (uint8)

        Returns:
            DetectionResult: Exactly one result for the frame

        Raises:
            FrameProcessingError: If the frame is unusable or an OpenCV call fails
        """
        self._validate(frame)
        self._frame_count += 1
        verbose = self._frame_count % LOG_EVERY_N_FRAMES == 0

        height, width = frame.shape[:2]
        s = self.strategy

        try:
            gray = self._to_gray(frame)
            # Smooth internal document texture, keep the boundary contrast
            filtered = cv2.bilateralFilter(gray, s.blur_diameter, s.blur_sigma_color, s.blur_sigma_space)
            survivors = self._find_candidates(filtered, width, height, verbose)
        except cv2.error as e:
            raise FrameProcessingError(e, frame_shape=frame.shape) from e

        best = select_best(survivors)

        if best is None:
            if verbose:
                logger.debug(f"Frame {self._frame_count}: no document detected")
            return DetectionResult.searching()

        return self._build_result(best, width, height, verbose)

    def _validate(self, frame):
        if not isinstance(frame, np.ndarray) or frame.size == 0:
            raise FrameProcessingError("empty frame", frame_shape=getattr(frame, 'shape', None))
        if frame.ndim not in (2, 3) or (frame.ndim == 3 and frame.shape[2] not in (1, 3, 4)):
            raise FrameProcessingError("unsupported frame layout", frame_shape=frame.shape)
        if frame.dtype != np.uint8:
            raise FrameProcessingError(f"unsupported pixel type {frame.dtype}", frame_shape=frame.shape)

    @staticmethod
    def _to_gray(frame: np.ndarray) -> np.ndarray:
        if frame.ndim == 2:
            return frame
        channels = frame.shape[2]
        if channels == 1:
            return frame[:, :, 0]
        if channels == 4:
            return cv2.cvtColor(frame, cv2.COLOR_BGRA2GRAY)
        return cv2.cvtColor(frame, cv2.COLOR_BGR2GRAY)

    # ------------------------------------------------------------------
    # Masks
    # ------------------------------------------------------------------

    def _threshold_mask(self, filtered: np.ndarray) -> Tuple[str, np.ndarray]:
        """Bright document region against a darker background."""
        s = self.strategy
        if s.threshold_mode == 'adaptive':
            binary = cv2.adaptiveThreshold(
                filtered, 255, cv2.ADAPTIVE_THRESH_GAUSSIAN_C, cv2.THRESH_BINARY,
                s.adaptive_block_size, s.adaptive_c
            )
            source = 'adaptive'
        else:
            _, binary = cv2.threshold(filtered, 0, 255, cv2.THRESH_BINARY + cv2.THRESH_OTSU)
            source = 'thresh'

        # Fill small gaps inside the document region
        kernel = np.ones((s.close_kernel, s.close_kernel), np.uint8)
        closed = cv2.morphologyEx(binary, cv2.MORPH_CLOSE, kernel)
        return source, closed

    def _edge_mask(self, filtered: np.ndarray) -> Tuple[str, np.ndarray]:
        """Canny edges dilated to connect a broken document boundary."""
        s = self.strategy
        edges = cv2.Canny(filtered, s.canny_low, s.canny_high)
        dilate_kernel = np.ones((s.dilate_kernel, s.dilate_kernel), np.uint8)
        dilated = cv2.dilate(edges, dilate_kernel)
        close_kernel = np.ones((s.edge_close_kernel, s.edge_close_kernel), np.uint8)
        closed = cv2.morphologyEx(dilated, cv2.MORPH_CLOSE, close_kernel)
        return 'canny', closed

    # ------------------------------------------------------------------
    # Candidates
    # ------------------------------------------------------------------

    def _find_candidates(self, filtered: np.ndarray, width: int, height: int, verbose: bool) -> List[Candidate]:
        s = self.strategy
        builders: List[MaskBuilder] = []
        if s.threshold_mode != 'none':
            builders.append(self._threshold_mask)

        if s.edge_mode == 'canny':
            if s.edge_fallback and builders:
                survivors = self._evaluate(builders, filtered, width, height, verbose)
                if survivors:
                    return survivors
                return self._evaluate([self._edge_mask], filtered, width, height, verbose)
            builders.append(self._edge_mask)

        return self._evaluate(builders, filtered, width, height, verbose)

    def _evaluate(self, builders: List[MaskBuilder], filtered: np.ndarray,
                  width: int, height: int, verbose: bool) -> List[Candidate]:
        """Extract contours from each mask and keep the document-like ones."""
        s = self.strategy
        total_area = float(width * height)
        min_area = total_area * s.min_area_ratio
        max_area = total_area * s.max_area_ratio

        pool = []
        counts = []
        for build in builders:
            source, mask = build(filtered)
            contours, _ = cv2.findContours(mask, cv2.RETR_EXTERNAL, cv2.CHAIN_APPROX_SIMPLE)
            counts.append(f"{source}={len(contours)}")
            pool.extend((cv2.contourArea(c), source, c) for c in contours)

        # Largest contours first, stable for equal areas
        pool.sort(key=lambda item: item[0], reverse=True)

        survivors = []
        for idx, (area, source, contour) in enumerate(pool[:s.max_candidates]):
            if area < min_area or area > max_area:
                continue

            candidate = Candidate.from_contour(contour, source, area=area)
            _, _, bw, bh = candidate.bbox
            aspect_ratio = candidate.aspect_ratio

            if s.match_band(aspect_ratio, bw, bh) is None:
                if verbose and idx < 3:
                    logger.debug(f"  #{idx}({source}): AR={aspect_ratio:.2f} skip, "
                                 f"area={area / total_area:.1%}")
                continue

            if candidate.touches_edge(width, height, s.edge_margin):
                if verbose and idx < 3:
                    logger.debug(f"  #{idx}({source}): touches frame edge, skip")
                continue

            fill_ratio = candidate.fill_ratio
            if fill_ratio < s.min_fill_ratio:
                if verbose and idx < 5:
                    logger.debug(f"  #{idx}({source}): fill={fill_ratio:.2f} skip, AR={aspect_ratio:.2f}")
                continue

            survivors.append(candidate)

        if verbose:
            logger.debug(f"Frame {self._frame_count}: contours {', '.join(counts)}, "
                         f"{len(survivors)} candidate(s)")
            for candidate in rank(survivors)[:3]:
                logger.debug(f"  ✓ ({candidate.source}): AR={candidate.aspect_ratio:.2f}, "
                             f"vertices={candidate.vertex_count}, fill={candidate.fill_ratio:.2f}, "
                             f"area={candidate.area / total_area:.1%}")

        return survivors

    # ------------------------------------------------------------------
    # Result
    # ------------------------------------------------------------------

    def classify(self, candidate: Candidate) -> DocumentType:
        """Document type from the aspect band the candidate falls in."""
        _, _, bw, bh = candidate.bbox
        band = self.strategy.match_band(candidate.aspect_ratio, bw, bh)
        if band is None:
            return DocumentType.ID_CARD
        return band.document_type

    def _build_result(self, best: Candidate, width: int, height: int, verbose: bool) -> DetectionResult:
        x, y, w, h = best.bbox
        box = BoundingBox(x=x, y=y, width=w, height=h, corners=best.corners())
        document_type = self.classify(best)

        cx, cy = box.center
        tolerance = width * self.strategy.center_tolerance
        centered = abs(cx - width / 2.0) < tolerance and abs(cy - height / 2.0) < tolerance

        if verbose:
            logger.debug(f"Detected {document_type.value}: AR={best.aspect_ratio:.2f}, {w}x{h}, "
                         f"centered={centered}")

        return DetectionResult(
            status=DetectionStatus.CENTERED if centered else DetectionStatus.DETECTED,
            document_type=document_type,
            box=box,
            message=CENTERED_MESSAGE if centered else DETECTED_MESSAGE,
            score=best.score,
            source=best.source,
        )
