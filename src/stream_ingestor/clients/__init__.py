"""Streaming transport clients."""
