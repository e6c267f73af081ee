"""Background loops run by the reaper."""
