"""Synthetic ground-truth scenes for tests and experiments."""
