"""Spin-the-wheel quota, accounting and audit engine."""

__version__ = "0.1.0"
