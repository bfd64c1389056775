"""Content sources for the daily item list."""
