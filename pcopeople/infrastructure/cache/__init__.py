"""Caching Implementation.

Holds the field-definition cache: an immutable snapshot with an expiry time.
Bounded Context: Cache Management
"""
