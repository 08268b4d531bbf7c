"""Pipeline services: scoring, storage, batch processing and reporting."""
