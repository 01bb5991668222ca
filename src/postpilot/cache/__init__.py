"""Redis access.

Only the rate limiter uses Redis. Session state never lives here; the
credential store in the database is the single source of truth.
"""
