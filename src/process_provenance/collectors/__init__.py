"""Metadata collectors."""
