"""Project layout, manifest and context."""
