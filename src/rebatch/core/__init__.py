"""Core infrastructure: configuration, logging, hashing, and execution state."""
