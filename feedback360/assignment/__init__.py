"""Survey assignment: single-call engine and bulk import pipeline."""
