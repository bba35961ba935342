"""Completion providers and their registry."""
