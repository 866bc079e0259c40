"""Record and error sink plugins."""
