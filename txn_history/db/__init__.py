"""Persistence for user preferences (poll checkpoint state)."""
