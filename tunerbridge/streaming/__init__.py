"""Live stream relay."""
