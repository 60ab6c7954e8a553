"""Session encryption and device request signing."""
