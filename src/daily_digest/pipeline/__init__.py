"""State machine stages: batching, aggregation and rendering."""
