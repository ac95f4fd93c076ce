"""Application-wide settings and logging."""
