"""Pipeline services used by handlers.

Handlers import services lazily to keep cold starts small.
"""
