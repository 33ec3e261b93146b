"""API modules mapping People API endpoints onto typed calls."""
