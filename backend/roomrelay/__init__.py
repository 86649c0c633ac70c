"""roomrelay: real-time room-based presence and messaging relay."""

__version__ = "0.1.0"
