"""Slice docs, reports and graphs."""
