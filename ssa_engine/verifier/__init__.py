"""Multi-source evidence collection and corroboration."""
