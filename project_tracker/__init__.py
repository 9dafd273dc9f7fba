"""Project Tracker – a small server-rendered project management app."""

__version__ = "1.0.0"
