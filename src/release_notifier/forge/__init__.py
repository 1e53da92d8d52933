"""Forge adapters.

The notifier talks to the forge (GitHub) only through the client protocol
defined here, so the core logic can be exercised against an in-memory mock.
"""
