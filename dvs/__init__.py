"""dvs: content-addressed versioning for large data files."""

__version__ = "0.4.0"
