"""Record transform plugins."""
