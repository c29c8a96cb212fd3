"""phasegate - ordered review gates and mechanical scope verification."""

__version__ = "0.1.0"
