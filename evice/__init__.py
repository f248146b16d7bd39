"""Evice x402 gateway: pay-per-call access to verified knowledge assets."""

__version__ = "0.1.0"
