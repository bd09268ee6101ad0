"""Spinwheel worker: asynchronous customer notification delivery."""
