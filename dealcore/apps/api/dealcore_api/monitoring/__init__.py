"""Advisory purchase monitoring."""
