"""Repository operations."""
