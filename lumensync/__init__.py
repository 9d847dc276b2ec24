"""lumensync — wallet-local transaction history sync for Lumen addresses."""

__version__ = "0.1.0"
