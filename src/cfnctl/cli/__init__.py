"""Command-line interface for cfnctl."""
