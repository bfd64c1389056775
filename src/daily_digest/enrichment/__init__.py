"""Provider-facing enrichment: content retrieval, translation and summaries."""
