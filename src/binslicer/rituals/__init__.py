"""Ritual specs, the ritual runner and run views."""
