"""
Tests for document detection: geometry, strategies, detector and overlay.
"""
import cv2
import numpy as np
import pytest

from conftest import make_frame
from error_handlers import FrameProcessingError
from layer2_detection import (
    BoundingBox,
    Candidate,
    DetectionResult,
    DetectionStatus,
    DetectionStrategy,
    DocumentType,
    FrameDetector,
    OverlayState,
    RotatedRect,
    STRATEGIES,
    draw_overlay,
    get_strategy,
    order_corners,
    select_best,
)
from layer2_detection.overlay import COLOR_CENTERED, COLOR_DETECTED, COLOR_IDLE, IDLE_TEXT
from layer2_detection.result import CENTERED_MESSAGE, DETECTED_MESSAGE, SEARCHING_MESSAGE


def candidate(area, long_side, short_side, bbox=(0, 0, 10, 10)):
    rotated = RotatedRect(center=(0.0, 0.0), width=long_side, height=short_side, angle=0.0)
    return Candidate(area=area, bbox=bbox, rotated=rotated)


def rotated_card_frame(angle, size=(300, 189), center=(320, 240)):
    """640x480 frame with a filled card rotated by `angle` degrees."""
    frame = make_frame()
    pts = cv2.boxPoints((center, size, angle)).astype(np.int32)
    cv2.fillPoly(frame, [pts], (220, 220, 220))
    return frame


def l_shape_frame():
    """Filled L of card proportions (300x190) that covers half of its box."""
    frame = make_frame()
    pts = np.array([[170, 145], [470, 145], [470, 205], [250, 205], [250, 335], [170, 335]], dtype=np.int32)
    cv2.fillPoly(frame, [pts], (220, 220, 220))
    return frame


class TestDetectionResult:
    """Test the per-frame result value."""

    def test_default_is_searching(self):
        """Test the default result is searching with no box."""
        result = DetectionResult.searching()
        assert result.status == DetectionStatus.SEARCHING
        assert result.document_type == DocumentType.UNKNOWN
        assert result.box is None
        assert result.message == SEARCHING_MESSAGE

    def test_centered_requires_box(self):
        """Test a centered result cannot be built without a box."""
        with pytest.raises(ValueError):
            DetectionResult(status=DetectionStatus.CENTERED, document_type=DocumentType.ID_CARD)

    def test_to_dict(self):
        """Test serialization for the display layer."""
        box = BoundingBox(10, 20, 30, 40, corners=((10, 20), (40, 20), (40, 60), (10, 60)))
        result = DetectionResult(
            status=DetectionStatus.DETECTED,
            document_type=DocumentType.ID_CARD,
            box=box,
            message=DETECTED_MESSAGE,
            source='thresh',
        )
        data = result.to_dict()
        assert data['status'] == 'detected'
        assert data['documentType'] == 'ID Card'
        assert data['box']['x'] == 10
        assert data['box']['height'] == 40
        assert data['box']['corners'][2] == {'x': 40, 'y': 60}
        assert data['source'] == 'thresh'

    def test_searching_to_dict_has_no_box(self):
        """Test a searching result serializes without a box."""
        assert 'box' not in DetectionResult.searching().to_dict()


class TestGeometry:
    """Test candidate geometry and scoring."""

    def test_score_is_area_times_fill(self):
        """Test score = area x fill ratio."""
        c = candidate(1000, 50, 40)
        assert c.fill_ratio == pytest.approx(0.5)
        assert c.score == pytest.approx(500)

    def test_higher_score_wins(self):
        """Test the 800-score candidate beats the 500-score one."""
        low = candidate(1000, 50, 40)
        high = candidate(1000, 50, 25)
        assert high.score == pytest.approx(800)
        assert select_best([low, high]) is high
        assert select_best([high, low]) is high

    def test_tie_keeps_first(self):
        """Test equal scores keep the first candidate seen."""
        first = candidate(1000, 50, 25, bbox=(0, 0, 50, 25))
        second = candidate(1000, 50, 25, bbox=(100, 100, 50, 25))
        assert select_best([first, second]) is first

    def test_select_best_empty(self):
        """Test no candidates gives no winner."""
        assert select_best([]) is None

    def test_degenerate_rect(self):
        """Test zero-size rectangles do not divide by zero."""
        c = candidate(0, 10, 0)
        assert c.aspect_ratio == 0.0
        assert c.fill_ratio == 0.0

    def test_rotated_rect_normalised(self):
        """Test portrait minAreaRect output is turned into width >= height."""
        rect = RotatedRect.from_cv(((50, 50), (20, 80), 10.0))
        assert rect.width == 80
        assert rect.height == 20
        assert rect.angle == pytest.approx(100.0)

    def test_touches_edge(self):
        """Test the edge margin check."""
        c = Candidate(area=1, bbox=(5, 100, 50, 50))
        assert c.touches_edge(640, 480, 10)
        assert not c.touches_edge(640, 480, 5)

    def test_order_corners(self):
        """Test corners come back TL, TR, BR, BL."""
        pts = np.array([[100, 0], [0, 50], [0, 0], [100, 50]], dtype=np.float32)
        ordered = order_corners(pts)
        assert ordered.tolist() == [[0, 0], [100, 0], [100, 50], [0, 50]]

    def test_order_corners_diamond(self):
        """Test a 45 degree box keeps all four corners when sums and differences tie."""
        pts = np.array([[147, 200], [280, 67], [492, 279], [359, 412]], dtype=np.float32)
        ordered = order_corners(pts)
        assert len({tuple(p) for p in ordered.tolist()}) == 4
        tl, tr, br, bl = ordered.tolist()
        assert tl[1] <= bl[1] and tr[1] <= br[1]
        assert tl[0] < tr[0] and bl[0] < br[0]


class TestStrategy:
    """Test detection strategy presets and validation."""

    def test_presets_available(self):
        """Test the named presets."""
        assert set(STRATEGIES) == {'card', 'a4', 'mixed'}

    def test_default_is_card(self):
        """Test the card preset thresholds."""
        s = get_strategy()
        assert s.name == 'card'
        assert s.min_area_ratio == 0.03
        assert s.max_area_ratio == 0.40
        assert s.min_fill_ratio == 0.75
        assert s.edge_margin == 10
        assert s.center_tolerance == 0.18

    def test_lookup_is_case_insensitive(self):
        """Test preset names are normalised."""
        assert get_strategy(' A4 ').name == 'a4'

    def test_unknown_preset(self):
        """Test unknown presets list the available ones."""
        with pytest.raises(ValueError, match='available'):
            get_strategy('passport')

    def test_card_band(self):
        """Test the ID card aspect band."""
        s = get_strategy('card')
        band = s.match_band(1.58, 360, 227)
        assert band.document_type == DocumentType.ID_CARD
        assert s.match_band(1.0, 200, 200) is None
        assert s.match_band(2.0, 400, 200) is None

    def test_a4_band_is_portrait(self):
        """Test the A4 band only accepts portrait sheets."""
        s = get_strategy('a4')
        assert s.match_band(1.41, 210, 297).document_type == DocumentType.AADHAAR_LETTER
        assert s.match_band(1.41, 297, 210) is None

    def test_invalid_configuration(self):
        """Test invalid strategies are rejected."""
        with pytest.raises(ValueError):
            DetectionStrategy(threshold_mode='sobel')
        with pytest.raises(ValueError):
            DetectionStrategy(threshold_mode='none', edge_mode='none')
        with pytest.raises(ValueError):
            DetectionStrategy(min_area_ratio=0.5, max_area_ratio=0.4)
        with pytest.raises(ValueError):
            DetectionStrategy(adaptive_block_size=30)

    def test_with_overrides(self):
        """Test overrides return a new strategy."""
        s = get_strategy('card').with_overrides(edge_margin=0)
        assert s.edge_margin == 0
        assert get_strategy('card').edge_margin == 10


class TestFrameDetector:
    """Test detection on synthetic frames."""

    @pytest.fixture
    def detector(self):
        return FrameDetector()

    def test_centered_card(self, detector, card_frame):
        """Test a card near the middle is found, classified and centered."""
        result = detector.detect(card_frame)
        assert result.status == DetectionStatus.CENTERED
        assert result.document_type == DocumentType.ID_CARD
        assert result.message == CENTERED_MESSAGE
        box = result.box
        assert (box.x, box.y, box.width, box.height) == (100, 140, 360, 227)
        assert len(box.corners) == 4

    def test_corners_ordered(self, detector, card_frame):
        """Test corners are ordered TL, TR, BR, BL around the card."""
        tl, tr, br, bl = detector.detect(card_frame).box.corners
        assert tl[0] < tr[0] and tl[1] < bl[1]
        assert br[0] > bl[0] and br[1] > tr[1]
        assert tl[0] == pytest.approx(100, abs=2)
        assert br[1] == pytest.approx(366, abs=2)

    def test_detection_is_idempotent(self, detector, card_frame):
        """Test the same frame gives the same result."""
        assert detector.detect(card_frame) == detector.detect(card_frame.copy())

    def test_frame_not_modified(self, detector, card_frame):
        """Test detection does not write into the frame."""
        original = card_frame.copy()
        detector.detect(card_frame)
        assert np.array_equal(card_frame, original)

    def test_blank_frame(self, detector, blank_frame):
        """Test an empty scene is searching."""
        result = detector.detect(blank_frame)
        assert result.status == DetectionStatus.SEARCHING
        assert result.box is None

    def test_near_full_frame_rejected(self, detector):
        """Test a document filling almost the whole frame is rejected."""
        frame = make_frame((5, 5, 630, 470))
        assert detector.detect(frame).status == DetectionStatus.SEARCHING

    def test_edge_touching_rejected(self, detector):
        """Test a document cut by the frame edge is rejected."""
        frame = make_frame((0, 140, 360, 227))
        assert detector.detect(frame).status == DetectionStatus.SEARCHING

    def test_square_rejected(self, detector):
        """Test a square is not card shaped."""
        frame = make_frame((220, 140, 200, 200))
        assert detector.detect(frame).status == DetectionStatus.SEARCHING

    def test_off_center_is_detected(self, detector, off_center_frame):
        """Test a card away from the center is detected but not centered."""
        result = detector.detect(off_center_frame)
        assert result.status == DetectionStatus.DETECTED
        assert result.message == DETECTED_MESSAGE
        assert result.box.x == 330

    def test_largest_candidate_wins(self, detector):
        """Test the higher scoring of two cards is chosen."""
        frame = make_frame((60, 60, 160, 101), (330, 250, 240, 151))
        result = detector.detect(frame)
        assert result.status == DetectionStatus.DETECTED
        assert (result.box.x, result.box.y) == (330, 250)

    def test_grayscale_and_bgra(self, detector, card_frame):
        """Test single channel and four channel frames are accepted."""
        gray = card_frame[:, :, 0].copy()
        bgra = np.dstack([card_frame, np.full(card_frame.shape[:2], 255, dtype=np.uint8)])
        assert detector.detect(gray).status == DetectionStatus.CENTERED
        assert detector.detect(bgra).status == DetectionStatus.CENTERED

    @pytest.mark.parametrize('frame', [
        np.zeros((0, 0, 3), dtype=np.uint8),
        np.zeros((480, 640, 3), dtype=np.float32),
        np.zeros((480, 640, 2), dtype=np.uint8),
        None,
    ])
    def test_unusable_frame(self, detector, frame):
        """Test unusable frames raise FrameProcessingError."""
        with pytest.raises(FrameProcessingError) as exc:
            detector.detect(frame)
        assert exc.value.error_code == 'FRAME_PROCESSING_FAILED'

    def test_mixed_strategy_finds_card(self, card_frame):
        """Test the merged-mask preset still finds the card."""
        result = FrameDetector(get_strategy('mixed')).detect(card_frame)
        assert result.document_type == DocumentType.ID_CARD
        assert result.status == DetectionStatus.CENTERED

    @pytest.mark.parametrize('angle', [20, 45, 135, 225])
    def test_tilted_card(self, detector, angle):
        """Test a tilted card is centered and reports four distinct corners."""
        result = detector.detect(rotated_card_frame(angle))
        assert result.status == DetectionStatus.CENTERED
        assert result.document_type == DocumentType.ID_CARD
        corners = result.box.corners
        assert len(corners) == 4
        assert len(set(corners)) == 4

    def test_low_fill_shape_rejected(self, detector):
        """Test an L shape with card proportions fails the fill ratio check."""
        assert detector.detect(l_shape_frame()).status == DetectionStatus.SEARCHING

    def test_a4_sheet(self):
        """Test a portrait sheet is found with the A4 preset."""
        frame = make_frame((220, 40, 200, 283), width=640, height=480)
        result = FrameDetector(get_strategy('a4')).detect(frame)
        assert result.document_type == DocumentType.AADHAAR_LETTER
        assert result.status == DetectionStatus.CENTERED


class TestOverlay:
    """Test overlay state derivation and drawing."""

    def test_searching_state(self):
        """Test searching shows the idle guide."""
        state = OverlayState.from_result(None)
        assert state.color == COLOR_IDLE
        assert state.guide_aspect > 1.0

    def test_centered_state(self, card_frame):
        """Test centered turns the guide green."""
        result = FrameDetector().detect(card_frame)
        assert OverlayState.from_result(result).color == COLOR_CENTERED

    def test_detected_state(self, off_center_frame):
        """Test detected turns the guide yellow."""
        result = FrameDetector().detect(off_center_frame)
        assert OverlayState.from_result(result).color == COLOR_DETECTED

    def test_a4_guide_is_portrait(self):
        """Test A4 documents get a portrait guide."""
        box = BoundingBox(0, 0, 10, 14)
        result = DetectionResult(status=DetectionStatus.DETECTED, document_type=DocumentType.AADHAAR_LETTER, box=box)
        state = OverlayState.from_result(result)
        assert state.guide_aspect < 1.0
        x, y, w, h = state.guide_rect(640, 480)
        assert h <= 480 * 0.95 + 1
        assert w < h

    def test_detector_message_shown(self, card_frame, off_center_frame):
        """Test the detector's message replaces the fixed guide text."""
        detector = FrameDetector()
        assert OverlayState.from_result(detector.detect(card_frame)).message == CENTERED_MESSAGE
        assert OverlayState.from_result(detector.detect(off_center_frame)).message == DETECTED_MESSAGE
        assert OverlayState.from_result(DetectionResult.searching()).message == SEARCHING_MESSAGE
        assert OverlayState.from_result(None).message == IDLE_TEXT

    def test_document_label(self, card_frame):
        """Test the detected document type is labelled, unknown types are not."""
        assert OverlayState.from_result(FrameDetector().detect(card_frame)).document_label == "Detected: ID Card"
        assert OverlayState.from_result(DetectionResult.searching()).document_label is None
        assert OverlayState.from_result(None).document_label is None

    def test_draw_does_not_touch_input(self, card_frame):
        """Test drawing returns a new frame of the same size."""
        result = FrameDetector().detect(card_frame)
        original = card_frame.copy()
        drawn = draw_overlay(card_frame, result, progress=0.5)
        assert drawn.shape == card_frame.shape
        assert np.array_equal(card_frame, original)
        assert not np.array_equal(drawn, original)
