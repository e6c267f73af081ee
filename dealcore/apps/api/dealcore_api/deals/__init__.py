"""Deal lifecycle management."""
