"""Long-running background processes."""
