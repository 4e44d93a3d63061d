"""Command-line interface for remindsync."""
