"""SSA engine: security verification and drift monitoring for Supra Move FA and coin targets."""

__version__ = "0.1.0"
