"""
JPG/PDF converter backend.

Exposes a FastAPI application (`converter.main:app`) that queues uploaded
JPG and PDF files per session and converts them into each other.
"""

__all__ = ["__version__"]

__version__ = "1.0.0"
