"""Packaged data files (vulnerability table)."""
