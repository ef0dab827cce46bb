"""Relational project store: schema, migrations and entity persistence."""
