"""Broker execution reconciliation: raw fills in, round-trip trades out."""

__version__ = "0.1.0"
