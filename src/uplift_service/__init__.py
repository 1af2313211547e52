"""Cart uplift recommendation and bundling engine."""

__version__ = "0.1.0"
