"""Record source plugins."""
