"""Core types, configuration, logging and shared helpers."""
