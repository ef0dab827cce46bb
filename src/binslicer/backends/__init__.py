"""Analysis backends and the backend registry."""
