"""Content Audit Platform: competitive content scoring and optimization."""

__version__ = "1.0.0"
