"""Caller identity and admin authentication."""
