"""Command-line interface for the Core Lightning migrator."""
