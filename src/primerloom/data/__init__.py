"""Packaged data files (default section catalog)."""
