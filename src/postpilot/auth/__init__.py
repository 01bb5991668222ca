"""Authentication: token codec, password hashing and the request auth gate.

Learn: Two credentials work together:
1. Access token → stateless JWT checked on every request (auth gate)
2. Refresh token → stateful, rotated on each use (session manager)

Both resolve to a "current identity" for downstream handlers.
"""
