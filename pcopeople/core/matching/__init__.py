"""Candidate scoring and match selection strategies."""
