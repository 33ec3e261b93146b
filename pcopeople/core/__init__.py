"""Core Application Layer: Orchestrates use cases and application logic.

Contains the error taxonomy, the batch executor and the person matcher.
Services depend on the `PeopleDirectory` port, not on the HTTP client.
"""
