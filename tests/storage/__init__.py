"""
Storage Tests Package

Object store, HEAD reference, short-id resolution and record cache.

TEST AXIOMS:
=============
1. Determinism: identical payloads always map to the identical id
2. Containment: no input can make the store touch a path outside its root
3. Explicit failure: every rejected operation returns a typed error
"""
