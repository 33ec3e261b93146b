"""Domain Event definitions.

Represents request, auth, rate limit, cache and retry occurrences that
observers registered on the client's `EventEmitter` can react to.
"""
