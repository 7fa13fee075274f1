"""Chat session gateway: session lifecycle, connection supervision and auto-replies."""

__version__ = "0.1.0"
