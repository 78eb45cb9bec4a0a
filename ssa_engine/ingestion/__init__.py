"""Readers for chain RPC endpoints and the SupraScan indexer."""
