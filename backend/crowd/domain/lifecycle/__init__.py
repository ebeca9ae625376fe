"""Expired event cleanup."""
