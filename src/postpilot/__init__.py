"""PostPilot — content-scheduling backend.

This package holds the session core: token codec, credential store,
session manager and the request auth gate, served through FastAPI.
"""

__version__ = "0.1.0"
