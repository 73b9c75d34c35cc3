"""Repository and per-user configuration."""
