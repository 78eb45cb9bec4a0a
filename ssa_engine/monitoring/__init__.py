"""Drift fingerprints, snapshot storage, monitor registry and scheduler."""
