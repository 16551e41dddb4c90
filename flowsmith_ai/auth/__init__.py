"""OAuth credential helpers."""
