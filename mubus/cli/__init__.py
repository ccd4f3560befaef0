"""Command-line interface for mubus."""
