"""Analysis records and summaries."""
