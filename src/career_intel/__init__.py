"""Career intelligence task queue and worker."""

__version__ = "0.1.0"
