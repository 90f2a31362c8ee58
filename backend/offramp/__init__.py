"""Stablecoin (USDC/USDT) to INR off-ramp partner gateway."""

__version__ = "1.0.0"
