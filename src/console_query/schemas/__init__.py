"""Pydantic schemas for list queries, pages, filter metadata and presets."""
