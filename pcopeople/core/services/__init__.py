"""Application services: batch execution and person matching."""
