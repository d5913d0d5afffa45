"""Runtime layer: batch retrieval and observability."""
