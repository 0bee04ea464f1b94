"""
Atelier: class booking core for a small woodcarving studio.

The package keeps a versioned, size-chunked read cache in front of a slow
row-oriented store and serializes reservation writes so that a class slot
is never oversold:
1. Chunked and versioned dataset caching on Valkey
2. Incremental cache updates after single-row writes
3. Reservation transactions under a global mutex with waitlist handling
"""

__version__ = "0.1.0"
