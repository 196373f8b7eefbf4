#!/usr/bin/env python3
"""
Hand Sign Client - Main Entry Point

This client runs next to the camera, extracts hand landmarks locally with
MediaPipe, and streams them to the gesture gateway over WebSocket. Keyboard
intents in the preview window drive capture, curation and training.

Keys (preview window):
    r       start a capture (countdown, then 5 s of sampling)
    x       abort the running capture
    [ / ]   previous / next page of captured frames
    1-5     toggle the n-th frame on the current page
    Enter   commit the selection as --label
    c       discard the captured frames
    q, Esc  quit

Usage:
    python -m handsign_client.main --server ws://127.0.0.1:8080/session --token SECRET --model greetings
    python -m handsign_client.main --token SECRET --model greetings --frames 10 --label hello --preview
"""

import argparse
import asyncio
import logging
import signal
import sys
import time
from typing import Dict, Optional

import cv2
import numpy as np

from handsign.curator import FRAMES_PER_PAGE
from handsign.message import (
    AbortCaptureMessage,
    CancelCurationMessage,
    CaptureStateMessage,
    CapturedMessage,
    CommitFramesMessage,
    CountdownMessage,
    CreateModelMessage,
    CurationMessage,
    ErrorMessage,
    Message,
    ModelInfoMessage,
    ScoresMessage,
    SelectModelMessage,
    SetPageMessage,
    StartCaptureMessage,
    ToggleFrameMessage,
    TrainedMessage,
    create_detection_message,
)
from handsign.model import best_label
from .detector import HandDetector
from .frame_gate import FrameGate, LandmarkGate
from .ws_client import WebSocketClient

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

KEY_ENTER = (10, 13)
KEY_ESCAPE = 27


class HandSignClient:
    """
    Main client that integrates all components:
    - Camera capture and frame gate
    - MediaPipe hand detection and landmark gate
    - WebSocket communication with the gateway
    - Keyboard intents and preview overlay
    """

    def __init__(
        self,
        server_url: str,
        token: str,
        model_name: str,
        camera_index: int = 0,
        number_of_frames: int = 10,
        label: Optional[str] = None,
        rate: float = 30.0,
        show_preview: bool = False,
    ):
        """
        Initialize the client.

        Args:
            server_url: WebSocket server URL
            token: Authentication token
            model_name: Model to select, created if the gateway does not have it
            camera_index: Camera device index
            number_of_frames: Sample length used when the model is created
            label: Label committed with Enter
            rate: Detection loop rate (Hz)
            show_preview: Whether to show OpenCV preview window
        """
        self.server_url = server_url
        self.token = token
        self.model_name = model_name
        self.camera_index = camera_index
        self.number_of_frames = number_of_frames
        self.label = label
        self.rate = rate
        self.show_preview = show_preview

        # Components
        self.frame_gate = FrameGate()
        self.landmark_gate = LandmarkGate()
        self.detector = HandDetector()
        self.ws_client: Optional[WebSocketClient] = None

        # Camera
        self.cap: Optional[cv2.VideoCapture] = None

        # Gateway state mirrored from events
        self.model_info: Optional[ModelInfoMessage] = None
        self.scores: Dict[str, float] = {}
        self.countdown: Optional[int] = None
        self.capture_state = "idle"
        self.curation: Optional[CurationMessage] = None
        self.status_line = ""

        self._running = False
        self._create_requested = False

        # UI font
        self.font = cv2.FONT_HERSHEY_SIMPLEX

    async def start(self) -> None:
        """Start the client."""
        logger.info("Starting Hand Sign Client...")

        if not self._init_camera():
            raise RuntimeError("Failed to initialize camera")

        self.detector.open()

        self.ws_client = WebSocketClient(
            server_url=self.server_url,
            token=self.token,
            on_connected=self._on_connected,
            on_disconnected=self._on_disconnected,
            on_message=self._on_message,
        )
        await self.ws_client.start()

        self._running = True
        logger.info("Hand Sign Client started")

    async def stop(self) -> None:
        """Stop the client and clean up resources."""
        logger.info("Stopping Hand Sign Client...")
        self._running = False

        if self.ws_client:
            await self.ws_client.stop()

        if self.cap:
            self.cap.release()
            self.cap = None

        self.detector.close()

        if self.show_preview:
            cv2.destroyAllWindows()

        logger.info("Hand Sign Client stopped")

    def request_stop(self) -> None:
        """Ask the detection loop to exit after the current frame."""
        self._running = False

    async def run(self) -> None:
        """Main detection loop."""
        target_dt = 1.0 / self.rate

        while self._running:
            loop_start = time.time()

            try:
                self._process_frame()
            except Exception as e:
                logger.error(f"Error in detection loop: {e}")

            if self.show_preview:
                self._handle_key(cv2.waitKey(1) & 0xFF)

            elapsed = time.time() - loop_start
            if elapsed < target_dt:
                await asyncio.sleep(target_dt - elapsed)
            else:
                await asyncio.sleep(0)

    def _process_frame(self) -> None:
        """Process a single camera frame through the pipeline."""
        ok, frame = self.cap.read()

        # ====== FRAME QUALITY GATE ======
        frame_result = self.frame_gate.validate(ok, frame)
        if not frame_result.valid:
            self._send_detection(None)
            return

        frame = cv2.flip(frame_result.frame, 1)

        # ====== HAND DETECTION ======
        landmarks = self.detector.process(frame)
        valid, reason = self.landmark_gate.validate(landmarks)
        if not valid and reason != "no_hand":
            logger.debug(f"Detection dropped: {reason}")
        self._send_detection(landmarks if valid else None)

        # ====== PREVIEW DISPLAY ======
        if self.show_preview:
            self._draw_preview(frame)
            cv2.imshow("Hand Sign Client", frame)

    def _send_detection(self, landmarks) -> None:
        if self.ws_client and self.ws_client.connected:
            self.ws_client.send(create_detection_message(landmarks))

    # ------------------------------------------------------------------
    # Intents
    # ------------------------------------------------------------------

    def _send(self, msg: Message) -> None:
        if self.ws_client and self.ws_client.connected:
            self.ws_client.send(msg)
        else:
            logger.warning(f"Not connected, {msg.type} not sent")

    def _handle_key(self, key: int) -> None:
        if key == 0xFF:
            return
        if key in (KEY_ESCAPE, ord('q')):
            logger.info("Quit requested")
            self.request_stop()
        elif key == ord('r'):
            self._send(StartCaptureMessage())
        elif key == ord('x'):
            self._send(AbortCaptureMessage())
        elif key == ord('c'):
            self.curation = None
            self._send(CancelCurationMessage())
        elif self.curation is None:
            return
        elif key == ord('['):
            self._send(SetPageMessage(page=self.curation.page - 1))
        elif key == ord(']'):
            self._send(SetPageMessage(page=self.curation.page + 1))
        elif ord('1') <= key < ord('1') + FRAMES_PER_PAGE:
            index = self.curation.page * FRAMES_PER_PAGE + (key - ord('1'))
            if index < self.curation.frame_count:
                self._send(ToggleFrameMessage(index=index))
        elif key in KEY_ENTER:
            if not self.label:
                self.status_line = "Pass --label to commit"
                logger.warning("Commit needs --label")
                return
            self._send(CommitFramesMessage(label=self.label))

    # ------------------------------------------------------------------
    # Gateway events
    # ------------------------------------------------------------------

    async def _on_connected(self) -> None:
        """Select (or create) the model once connected."""
        logger.info("Connected to gateway")
        self._create_requested = False
        self._send(SelectModelMessage(name=self.model_name))

    async def _on_disconnected(self) -> None:
        logger.warning("Disconnected from gateway")
        self.curation = None
        self.countdown = None
        self.capture_state = "idle"

    def _on_message(self, msg: Message) -> None:
        if isinstance(msg, ScoresMessage):
            self.scores = msg.scores
        elif isinstance(msg, CountdownMessage):
            self.countdown = msg.value
        elif isinstance(msg, CaptureStateMessage):
            self.capture_state = msg.state
            if msg.state != "countdown":
                self.countdown = None
        elif isinstance(msg, CapturedMessage):
            self.status_line = f"Captured {msg.count} frames"
            logger.info(self.status_line)
        elif isinstance(msg, CurationMessage):
            self.curation = msg
        elif isinstance(msg, ModelInfoMessage):
            self.model_info = msg
            logger.info(
                f"Model {msg.name!r}: N={msg.number_of_frames}, labels={msg.labels}"
            )
        elif isinstance(msg, TrainedMessage):
            if msg.accepted:
                self.curation = None
                self.status_line = f"Trained {msg.label!r}"
                logger.info(self.status_line)
            else:
                self.status_line = f"Training rejected: {msg.reason}"
                logger.warning(self.status_line)
        elif isinstance(msg, ErrorMessage):
            if msg.reason == "model_not_found" and not self._create_requested:
                logger.info(f"Creating model {self.model_name!r} (N={self.number_of_frames})")
                self._create_requested = True
                self._send(CreateModelMessage(
                    name=self.model_name, number_of_frames=self.number_of_frames,
                ))
                return
            self.status_line = f"Error: {msg.reason}"
            logger.warning(f"Gateway error: {msg.reason} {msg.detail}")

    # ------------------------------------------------------------------
    # Camera and preview
    # ------------------------------------------------------------------

    def _init_camera(self) -> bool:
        """Initialize video capture."""
        logger.info(f"Opening camera index: {self.camera_index}")
        self.cap = cv2.VideoCapture(self.camera_index)

        if not self.cap.isOpened():
            logger.error("Failed to open camera source")
            return False

        width = int(self.cap.get(cv2.CAP_PROP_FRAME_WIDTH))
        height = int(self.cap.get(cv2.CAP_PROP_FRAME_HEIGHT))
        fps = self.cap.get(cv2.CAP_PROP_FPS)
        logger.info(f"Camera opened: {width}x{height} @ {fps:.1f} fps")
        return True

    def _draw_preview(self, frame: np.ndarray) -> None:
        """Draw preview overlay."""
        h, w = frame.shape[:2]
        self.detector.draw(frame)

        # Connection status
        connected = self.ws_client is not None and self.ws_client.connected
        conn_color = (0, 255, 0) if connected else (0, 0, 255)
        cv2.putText(
            frame, f"Gateway: {'Connected' if connected else 'Disconnected'}",
            (20, 30), self.font, 0.5, conn_color, 1,
        )

        if self.model_info:
            cv2.putText(
                frame,
                f"Model: {self.model_info.name} (N={self.model_info.number_of_frames}, "
                f"{len(self.model_info.labels)} labels)",
                (20, 55), self.font, 0.5, (255, 255, 255), 1,
            )

        # Top prediction
        top = best_label(self.scores)
        if top is not None:
            cv2.putText(
                frame, f"{top}: {self.scores[top]:.2f}",
                (20, 95), self.font, 0.9, (0, 255, 255), 2,
            )

        # Capture progress
        if self.countdown is not None:
            cv2.putText(
                frame, str(self.countdown),
                (w // 2 - 20, h // 2), self.font, 3.0, (0, 165, 255), 5,
            )
        elif self.capture_state == "capturing":
            cv2.putText(frame, "CAPTURING", (w - 180, 30), self.font, 0.7, (0, 0, 255), 2)

        # Curation state
        if self.curation:
            c = self.curation
            cv2.putText(
                frame,
                f"Selected {len(c.selected)}/{c.required}  page {c.page + 1}/{c.page_count}  "
                f"frames {c.frame_count}",
                (20, h - 70), self.font, 0.6, (0, 200, 0), 2,
            )
            first = c.page * FRAMES_PER_PAGE
            slots = []
            for k in range(FRAMES_PER_PAGE):
                index = first + k
                if index >= c.frame_count:
                    break
                mark = "*" if index in c.selected else " "
                slots.append(f"{k + 1}:{index}{mark}")
            cv2.putText(frame, "  ".join(slots), (20, h - 45), self.font, 0.6, (0, 200, 0), 1)

        if self.status_line:
            cv2.putText(frame, self.status_line, (20, h - 15), self.font, 0.5, (255, 0, 0), 1)


async def main_async(args: argparse.Namespace) -> None:
    """Async main entry point."""
    client = HandSignClient(
        server_url=args.server,
        token=args.token,
        model_name=args.model,
        camera_index=args.camera,
        number_of_frames=args.frames,
        label=args.label,
        rate=args.rate,
        show_preview=args.preview,
    )

    loop = asyncio.get_running_loop()

    def signal_handler():
        logger.info("Shutdown signal received")
        client.request_stop()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, signal_handler)

    try:
        await client.start()
        await client.run()
    except Exception as e:
        logger.error(f"Client error: {e}")
    finally:
        await client.stop()


def main() -> None:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Hand Sign Client",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )

    parser.add_argument(
        "--server",
        type=str,
        default="ws://127.0.0.1:8080/session",
        help="WebSocket server URL",
    )
    parser.add_argument(
        "--token",
        type=str,
        required=True,
        help="Authentication token",
    )
    parser.add_argument(
        "--camera",
        type=int,
        default=0,
        help="Camera device index",
    )
    parser.add_argument(
        "--model",
        type=str,
        required=True,
        help="Model name (created on the gateway if missing)",
    )
    parser.add_argument(
        "--frames",
        type=int,
        default=10,
        help="Frames per sample when the model is created",
    )
    parser.add_argument(
        "--label",
        type=str,
        default=None,
        help="Label committed with Enter",
    )
    parser.add_argument(
        "--rate",
        type=float,
        default=30.0,
        help="Detection loop rate (Hz)",
    )
    parser.add_argument(
        "--preview",
        action="store_true",
        help="Show preview window (required for keyboard intents)",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )

    args = parser.parse_args()

    if args.frames < 1:
        parser.error("--frames must be positive")
    if args.rate <= 0:
        parser.error("--rate must be positive")

    if args.debug:
        logging.getLogger().setLevel(logging.DEBUG)

    try:
        asyncio.run(main_async(args))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        sys.exit(0)


if __name__ == "__main__":
    main()
