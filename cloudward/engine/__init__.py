"""Framework execution engine, batching, and scoring."""
