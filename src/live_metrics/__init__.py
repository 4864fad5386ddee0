"""Live metrics windowing and polling engine."""

__version__ = "0.1.0"
