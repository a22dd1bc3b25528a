"""Audio and logging helpers."""
