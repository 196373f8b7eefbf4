"""
Handsign Gateway - gesture session server with a WebSocket control interface.

This module runs on the machine that keeps the models and:
- Accepts one controlling WebSocket client at a time
- Predicts, captures, curates and trains on the client's detections
- Serves and stores model snapshots over HTTP
"""

__version__ = "1.0.0"
