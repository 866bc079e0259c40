"""Built-in plugins and the pluggy registry that resolves them by name."""
