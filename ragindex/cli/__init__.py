"""ragindex command-line tools."""
