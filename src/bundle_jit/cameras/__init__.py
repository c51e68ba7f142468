"""Camera projection models."""
