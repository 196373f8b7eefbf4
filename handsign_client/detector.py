"""
MediaPipe hand detector.

Wraps `mediapipe.solutions.hands` and reduces each result to the first
detected hand's (x, y, z) landmark list.
"""

import logging
from typing import Any, List, Optional

import cv2
import mediapipe as mp
import numpy as np

from handsign.landmarks import Landmark

logger = logging.getLogger(__name__)

# MediaPipe setup
mp_hands = mp.solutions.hands
mp_draw = mp.solutions.drawing_utils


def first_hand_points(results: Any) -> Optional[List[Landmark]]:
    """
    Extract the first hand from MediaPipe results.

    Returns:
        List of (x, y, z) tuples, or None when no hand was detected
    """
    if results is None or not results.multi_hand_landmarks:
        return None
    hand = results.multi_hand_landmarks[0]
    return [(lm.x, lm.y, lm.z) for lm in hand.landmark]


class HandDetector:
    """
    MediaPipe Hands with failure tracking.

    A processing exception counts as "no detection" for that tick; after
    `max_consecutive_failures` in a row the stream is flagged as problematic.
    """

    def __init__(
        self,
        model_complexity: int = 1,
        min_detection_confidence: float = 0.5,
        min_tracking_confidence: float = 0.5,
        max_consecutive_failures: int = 5,
    ):
        self.model_complexity = model_complexity
        self.min_detection_confidence = min_detection_confidence
        self.min_tracking_confidence = min_tracking_confidence
        self.max_consecutive_failures = max_consecutive_failures

        self._hands: Optional[Any] = None
        self.last_results: Optional[Any] = None

        self._consecutive_failures = 0
        self._total_failures = 0
        self._total_successes = 0
        self._total_detections = 0

    def open(self) -> None:
        if self._hands is None:
            self._hands = mp_hands.Hands(
                static_image_mode=False,
                max_num_hands=1,
                model_complexity=self.model_complexity,
                min_detection_confidence=self.min_detection_confidence,
                min_tracking_confidence=self.min_tracking_confidence,
            )

    def close(self) -> None:
        if self._hands is not None:
            self._hands.close()
            self._hands = None

    def process(self, frame_bgr: np.ndarray) -> Optional[List[Landmark]]:
        """
        Detect the first hand in a BGR camera frame.

        Args:
            frame_bgr: Camera frame as delivered by OpenCV

        Returns:
            The hand's landmarks, or None when nothing was detected
        """
        self.open()
        rgb = cv2.cvtColor(frame_bgr, cv2.COLOR_BGR2RGB)

        try:
            results = self._hands.process(rgb)
        except Exception as e:
            self._consecutive_failures += 1
            self._total_failures += 1
            self.last_results = None
            logger.warning(f"MediaPipe processing error: {e}")
            return None

        self._consecutive_failures = 0
        self._total_successes += 1
        self.last_results = results

        points = first_hand_points(results)
        if points is not None:
            self._total_detections += 1
        return points

    def is_stream_problematic(self) -> bool:
        """Check if the stream has too many consecutive failures."""
        return self._consecutive_failures >= self.max_consecutive_failures

    def draw(self, frame_bgr: np.ndarray) -> None:
        """Draw the last detected hand onto `frame_bgr`."""
        if self.last_results is None or not self.last_results.multi_hand_landmarks:
            return
        mp_draw.draw_landmarks(
            frame_bgr, self.last_results.multi_hand_landmarks[0], mp_hands.HAND_CONNECTIONS
        )

    def get_stats(self) -> dict:
        """Get processing statistics."""
        total = self._total_successes + self._total_failures
        return {
            "total_processed": total,
            "successes": self._total_successes,
            "failures": self._total_failures,
            "detections": self._total_detections,
            "consecutive_failures": self._consecutive_failures,
        }
