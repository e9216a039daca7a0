"""Business logic services.

Services contain all business logic and are called by routes and scripts.
They accept dependencies explicitly (store, config, optional `now`) so they
stay deterministic under test.
"""
