"""Capability extraction and static analysis of Move artifacts."""
