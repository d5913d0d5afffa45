"""I/O layer: caching and the Metabase HTTP client."""
