"""API Resilience Implementations.

Contains the sliding-window rate limiter and the retry service with
exponential backoff.
Bounded Context: API Resilience
"""
