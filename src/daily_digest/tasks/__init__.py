"""Daily task state, persistence and retry policy."""
