"""Command implementations (called from cli.py)."""
