"""mediagen - AI media generation backend."""

__version__ = "0.1.0"
