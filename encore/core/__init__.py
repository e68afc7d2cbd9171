"""
Core business logic for media access control.

This module is framework-agnostic - it doesn't import FastAPI or know
about HTTP. Storage is reached only through the StorageClient protocol,
so the access rules can be tested against the in-memory client.
"""
