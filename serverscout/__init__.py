"""Client-side backend endpoint discovery and resolution."""

__version__ = "0.3.0"
