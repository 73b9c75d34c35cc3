"""Core data model: object ids, manifest, sidecars, states and the reflog."""
