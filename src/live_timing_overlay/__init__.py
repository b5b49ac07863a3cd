"""Standings reconciliation, event derivation and card scheduling for live timing overlays."""

__version__ = "0.1.0"
