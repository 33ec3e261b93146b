"""Infrastructure Layer: Contains concrete implementations and adapters.

Connects the application to the People API (HTTP, auth, pagination),
configuration files, logging and the console.
"""
