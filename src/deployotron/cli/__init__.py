"""Command-line interface for Deployotron."""
