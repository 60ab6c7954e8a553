"""Cloud account API, models and session management."""
