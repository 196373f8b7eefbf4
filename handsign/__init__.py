"""
handsign - teach and recognize short hand-gesture sequences.

This package holds the engine shared by the gateway and the client:
- landmark normalization and the incremental template model
- timed capture, frame curation and the live prediction window
- versioned model snapshots and file-backed persistence
- the JSON message protocol
"""

__version__ = "1.0.0"
