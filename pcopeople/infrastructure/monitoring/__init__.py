"""Logging setup, event emitter and request metrics."""
