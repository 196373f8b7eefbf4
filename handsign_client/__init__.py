"""
Handsign Client - camera-side hand detection and session control.

This module runs on the machine with the camera, extracts hand landmarks
locally with MediaPipe, and streams them with user intents (capture,
curate, commit) to the gateway over WebSocket.
"""

__version__ = "1.0.0"
