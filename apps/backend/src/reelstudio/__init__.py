"""Reel Studio - job orchestration backend for Instagram Reels creators."""

__version__ = "0.1.0"
