"""End-to-end verification pipeline."""
